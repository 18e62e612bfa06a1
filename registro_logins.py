"""Registro de logins: libro de solo-añadir con los tokens emitidos, renovados y revocados.

Nunca se modifica una entrada ya escrita. Un logout es una entrada nueva
(tipo ``logout``) que manda sobre las anteriores; las entradas caducadas se
pueden purgar cuando se quiera con ``purgar_caducados``.
"""
import logging
import math
import re
import secrets
from collections import Counter
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from pydantic import ValidationError
from pymongo import ASCENDING, DESCENDING, IndexModel

from errores import ErrorValidacion
from login_log import LoginLog, CADUCIDAD_MAXIMA
from usuario import ahora

logger = logging.getLogger(__name__)

# Lo mínimo que guarda Mongo; un logout caduca en cuanto se escribe
UN_INSTANTE = timedelta(milliseconds=1)


async def asegurar_indices(col):
    await col.create_indexes([
        IndexModel([("timestamp", DESCENDING)]),
        IndexModel([("usuario", ASCENDING)]),
        IndexModel([("caducidad", ASCENDING)]),
        IndexModel([("token", ASCENDING)]),
    ])


async def _guardar(col, **campos) -> LoginLog:
    try:
        entrada = LoginLog(**campos)
    except ValidationError as e:
        raise ErrorValidacion.desde_pydantic(e)
    res = await col.insert_one(entrada.a_documento())
    entrada.id = str(res.inserted_id)
    return entrada


async def emitir(col, usuario: str, ttl: timedelta, provider: str = "google",
                 tipo_login: str = "login", user_agent: str = "", ip_address: str = "",
                 token: Optional[str] = None) -> LoginLog:
    momento = ahora()
    # Recortamos aquí también para no depender solo del validador
    caducidad = momento + min(ttl, CADUCIDAD_MAXIMA)
    entrada = await _guardar(
        col,
        timestamp=momento,
        usuario=usuario,
        caducidad=caducidad,
        token=token or secrets.token_urlsafe(32),
        provider=provider,
        tipo_login=tipo_login,
        user_agent=user_agent or "",
        ip_address=ip_address or "",
    )
    logger.info("Registrado %s de %s (%s)", entrada.tipo_login, entrada.usuario, entrada.provider)
    return entrada


async def revocar(col, usuario: str, token: str, provider: str = "google",
                  user_agent: str = "", ip_address: str = "") -> LoginLog:
    """Escribe un logout. La entrada original se queda como estaba."""
    momento = ahora()
    entrada = await _guardar(
        col,
        timestamp=momento,
        usuario=usuario,
        caducidad=momento + UN_INSTANTE,
        token=token,
        provider=provider,
        tipo_login="logout",
        user_agent=user_agent or "",
        ip_address=ip_address or "",
    )
    logger.info("Logout de %s", entrada.usuario)
    return entrada


async def es_token_valido(col, token: str) -> Optional[LoginLog]:
    doc = await col.find_one({"token": token, "caducidad": {"$gt": ahora()}})
    return LoginLog(**doc) if doc else None


async def token_revocado(col, token: str) -> bool:
    return await col.find_one({"token": token, "tipo_login": "logout"}) is not None


async def sesion_activa(col, usuario: str) -> Optional[LoginLog]:
    """Cualquier sesión viva del usuario posterior a su último logout.

    Ojo: no mira qué token se presenta, solo si el usuario tiene alguna sesión viva.
    """
    usuario = usuario.lower()
    filtro = {
        "usuario": usuario,
        "tipo_login": {"$ne": "logout"},
        "caducidad": {"$gt": ahora()},
    }
    ultimo_logout = await col.find_one(
        {"usuario": usuario, "tipo_login": "logout"},
        sort=[("timestamp", DESCENDING)],
    )
    if ultimo_logout:
        filtro["timestamp"] = {"$gt": ultimo_logout["timestamp"]}
    doc = await col.find_one(filtro)
    return LoginLog(**doc) if doc else None


async def _listar(col, filtro: dict, limite: int, saltar: int = 0) -> List[LoginLog]:
    cursor = col.find(filtro, sort=[("timestamp", DESCENDING)], skip=saltar, limit=limite)
    return [LoginLog(**doc) async for doc in cursor]


async def recientes(col, limite: int = 100) -> List[LoginLog]:
    return await _listar(col, {}, limite)


async def de_usuario(col, email: str, limite: int = 50) -> List[LoginLog]:
    return await _listar(col, {"usuario": email.lower()}, limite)


async def listar(col, pagina: int = 1, limite: int = 100,
                 usuario: Optional[str] = None) -> Tuple[List[LoginLog], dict]:
    pagina = max(pagina, 1)
    limite = max(1, min(limite, 1000))
    filtro = {"usuario": usuario.lower()} if usuario else {}
    saltar = (pagina - 1) * limite

    logs = await _listar(col, filtro, limite, saltar)
    total = await col.count_documents(filtro)
    paginacion = {
        "total": total,
        "page": pagina,
        "limit": limite,
        "totalPages": math.ceil(total / limite),
        "hasNext": saltar + limite < total,
        "hasPrev": pagina > 1,
    }
    return logs, paginacion


async def buscar(col, usuario: Optional[str] = None, provider: Optional[str] = None,
                 tipo_login: Optional[str] = None, desde: Optional[datetime] = None,
                 hasta: Optional[datetime] = None, limite: int = 100) -> List[LoginLog]:
    filtro = {}
    if usuario:
        filtro["usuario"] = {"$regex": re.escape(usuario), "$options": "i"}
    if provider:
        filtro["provider"] = provider
    if tipo_login:
        filtro["tipo_login"] = tipo_login
    if desde or hasta:
        filtro["timestamp"] = {}
        if desde:
            filtro["timestamp"]["$gte"] = desde
        if hasta:
            filtro["timestamp"]["$lte"] = hasta
    return await _listar(col, filtro, max(1, min(limite, 1000)))


async def purgar_caducados(col) -> int:
    res = await col.delete_many({"caducidad": {"$lt": ahora()}})
    if res.deleted_count:
        logger.info("Purgadas %d entradas caducadas", res.deleted_count)
    return res.deleted_count


async def _contar_por(col, campo: str) -> dict:
    grupos = col.aggregate([{"$group": {"_id": f"${campo}", "count": {"$sum": 1}}}])
    return {g["_id"]: g["count"] async for g in grupos}


async def estadisticas(col, dias: int = 7) -> dict:
    """Solo lectura: totales, usuarios únicos y reparto por tipo, proveedor y día."""
    desde = ahora() - timedelta(days=dias)
    por_dia = Counter()
    async for doc in col.find({"timestamp": {"$gte": desde}}, {"timestamp": 1}):
        por_dia[doc["timestamp"].strftime("%Y-%m-%d")] += 1

    return {
        "total": await col.count_documents({}),
        "usuarios_unicos": len(await col.distinct("usuario")),
        "ultimos_dias": sum(por_dia.values()),
        "por_tipo": await _contar_por(col, "tipo_login"),
        "por_provider": await _contar_por(col, "provider"),
        "por_dia": [{"date": dia, "count": n} for dia, n in sorted(por_dia.items())],
    }
