"""Configuración desde variables de entorno (y .env en local)."""
import logging
import sys

from environs import Env

env = Env()
env.read_env(path=".env", override=True)

ENVIRONMENT = env("ENVIRONMENT", "development").lower()
ES_PRODUCCION = ENVIRONMENT == "production"

SECRET_KEY = env("SECRET_KEY", "secreto")
JWT_SECRET = env("JWT_SECRET", SECRET_KEY)
TOKEN_TTL_HORAS = env.int("TOKEN_TTL_HORAS", 24)
# False = basta con que el usuario tenga alguna sesión viva (como siempre ha funcionado)
VALIDACION_TOKEN_ESTRICTA = env.bool("VALIDACION_TOKEN_ESTRICTA", False)

GOOGLE_CLIENT_ID = env("GOOGLE_CLIENT_ID", None)
GOOGLE_CLIENT_SECRET = env("GOOGLE_CLIENT_SECRET", None)
BASE_URL = env("BASE_URL", None)
FRONTEND_URL = env("FRONTEND_URL", "http://localhost:3000")

MONGO_URI = env("MONGO_URI", "mongodb://localhost:27017")
MONGO_DB = env("MONGO_DB", "EventualDB")

CLOUDINARY_CLOUD_NAME = env("CLOUDINARY_CLOUD_NAME", None)
CLOUDINARY_API_KEY = env("CLOUDINARY_API_KEY", None)
CLOUDINARY_API_SECRET = env("CLOUDINARY_API_SECRET", None)

OPENCAGE_API_KEY = env("OPENCAGE_API_KEY", None)

# 100 peticiones cada 15 minutos en producción, más margen en local
RATE_LIMIT_REQUESTS = env.int("RATE_LIMIT_REQUESTS", 100 if ES_PRODUCCION else 1000)
RATE_LIMIT_WINDOW = env.int("RATE_LIMIT_WINDOW", 15 * 60)

LOG_LEVEL = env.log_level("LOG_LEVEL", logging.INFO)


def configurar_logging(nivel: int = LOG_LEVEL):
    formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(nivel)
    root_logger.addHandler(console_handler)

    # Estos hablan demasiado
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
