from pydantic import BaseModel, Field, EmailStr, BeforeValidator, AfterValidator, PlainSerializer
from typing import Optional, Annotated, Literal
from datetime import datetime, timezone

# Truco Pro: Esto convierte automáticamente el ObjectId de Mongo a string
# Así no tienes que hacerlo manualmente en cada endpoint.
PyObjectId = Annotated[str, BeforeValidator(str)]

# Los emails siempre se guardan en minúsculas (las comprobaciones de dueño son igualdad exacta)
Email = Annotated[EmailStr, AfterValidator(str.lower)]

Provider = Literal["google", "facebook", "local"]


def normalizar_instante(valor: datetime) -> datetime:
    """Pasa a UTC sin tzinfo y recorta a milisegundos, que es lo que guarda Mongo."""
    if valor.tzinfo is not None:
        valor = valor.astimezone(timezone.utc).replace(tzinfo=None)
    return valor.replace(microsecond=valor.microsecond // 1000 * 1000)


def ahora() -> datetime:
    return normalizar_instante(datetime.now(timezone.utc))


def instante_iso(valor: datetime) -> str:
    # Hacia fuera siempre en UTC y con la Z
    return normalizar_instante(valor).isoformat(timespec="milliseconds") + "Z"


Instante = Annotated[
    datetime,
    AfterValidator(normalizar_instante),
    PlainSerializer(instante_iso, return_type=str, when_used="json"),
]


class Usuario(BaseModel):
    # El alias="_id" es la clave mágica.
    # Le dice a Pydantic: "Si en la BD se llama '_id', guárdalo aquí en 'id'"
    id: Optional[PyObjectId] = Field(alias="_id", default=None)

    nombre: str
    email: Email
    provider: Provider = "google"
    foto: Optional[str] = None

    class Config:
        # Esto permite que Pydantic entienda tanto 'id' como '_id'
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "nombre": "Estudiante IW",
                "email": "estudiante@ucm.es",
                "provider": "google"
            }
        }
