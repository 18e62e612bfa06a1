"""Puerta de autenticación: JWT propio + registro de logins + dueño del evento.

1. La credencial tiene que estar bien firmada y sin caducar.
2. El registro de logins tiene que tener una sesión viva para ese usuario.
   Por defecto basta con *cualquier* sesión viva del email (no se compara el
   token exacto); con ``estricta=True`` el token presentado tiene que estar
   vivo y sin revocar.
3. Para modificar un evento, el usuario tiene que ser su organizador.
"""
import logging
import secrets
import time

from authlib.jose import JsonWebToken
from authlib.jose.errors import JoseError
from pydantic import ValidationError

import config
import eventos_repo
import registro_logins
from errores import NoAutenticado
from evento import Evento
from usuario import Usuario

logger = logging.getLogger(__name__)

ALGORITMO = "HS256"
# Solo aceptamos el algoritmo con el que firmamos
jwt = JsonWebToken([ALGORITMO])


def crear_token(usuario: Usuario, horas: int = config.TOKEN_TTL_HORAS,
                secreto: str = config.JWT_SECRET) -> str:
    now = int(time.time())
    payload = {
        "id": usuario.id,
        "email": usuario.email,
        "name": usuario.nombre,
        "provider": usuario.provider,
        "iat": now,
        "exp": now + horas * 3600,
        # Dos tokens del mismo segundo no pueden salir iguales
        "jti": secrets.token_hex(8),
    }
    return jwt.encode({"alg": ALGORITMO}, payload, secreto).decode("utf-8")


def verificar_credencial(token: str, secreto: str = config.JWT_SECRET) -> Usuario:
    if not token:
        raise NoAutenticado("Falta el token de autenticación")
    try:
        claims = jwt.decode(token, secreto, claims_options={"exp": {"essential": True}})
        claims.validate()
        return Usuario(
            id=claims.get("id"),
            nombre=claims.get("name") or claims["email"],
            email=claims["email"],
            provider=claims.get("provider") or "google",
        )
    except (JoseError, ValueError, KeyError, ValidationError) as e:
        logger.info("Token rechazado: %s", e)
        raise NoAutenticado("Token inválido o caducado")


async def autenticar(col_logins, token: str, estricta: bool = config.VALIDACION_TOKEN_ESTRICTA,
                     secreto: str = config.JWT_SECRET) -> Usuario:
    usuario = verificar_credencial(token, secreto)

    if estricta:
        viva = await registro_logins.es_token_valido(col_logins, token)
        if viva and await registro_logins.token_revocado(col_logins, token):
            viva = None
    else:
        viva = await registro_logins.sesion_activa(col_logins, usuario.email)

    if not viva:
        raise NoAutenticado("Sesión caducada o cerrada")
    return usuario


async def comprobar_propietario(col_eventos, id_evento: str, email: str) -> Evento:
    """Devuelve el evento si es de ``email``; NoEncontrado o Prohibido si no."""
    evento = await eventos_repo.obtener_evento(col_eventos, id_evento)
    eventos_repo.comprobar_organizador(evento, email)
    return evento
