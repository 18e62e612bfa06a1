"""Acceso a la colección de eventos: alta, edición, borrado y búsquedas por zona."""
import logging
from typing import List

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import ValidationError
from pymongo import ASCENDING, IndexModel

from evento import Evento, EventoCrear, CAMPOS_EDITABLES
from errores import ErrorValidacion, NoEncontrado, Prohibido
from usuario import ahora

logger = logging.getLogger(__name__)

RADIO_CERCANIA = 0.2  # grados
LIMITE_PROXIMOS = 100


def _object_id(id_evento: str) -> ObjectId:
    try:
        return ObjectId(id_evento)
    except (InvalidId, TypeError):
        raise ErrorValidacion({"id": "ID de evento inválido"})


async def asegurar_indices(col):
    await col.create_indexes([
        IndexModel([("lat", ASCENDING), ("lon", ASCENDING)]),
        IndexModel([("timestamp", ASCENDING)]),
        IndexModel([("organizador", ASCENDING)]),
        IndexModel([("categoria", ASCENDING)]),
    ])


async def _listar(col, filtro: dict, limite: int = 0) -> List[Evento]:
    cursor = col.find(filtro, sort=[("timestamp", ASCENDING)], limit=limite)
    return [Evento(**doc) async for doc in cursor]


async def crear_evento(col, datos: dict, organizador: str) -> Evento:
    """Valida y guarda un evento nuevo.

    Las coordenadas tienen que venir ya resueltas (la geocodificación la hace
    quien llama). Si algo falla se devuelven todos los errores de golpe.
    """
    try:
        evento = EventoCrear(**{**datos, "organizador": organizador})
    except ValidationError as e:
        raise ErrorValidacion.desde_pydantic(e)

    evento.creado_en = evento.actualizado_en = ahora()
    res = await col.insert_one(evento.a_documento())
    evento.id = str(res.inserted_id)
    logger.info("Evento %s creado por %s", evento.id, evento.organizador)
    # Devolvemos un Evento normal, la regla de fecha futura ya no aplica
    return Evento(**evento.model_dump(by_alias=True))


async def obtener_evento(col, id_evento: str) -> Evento:
    doc = await col.find_one({"_id": _object_id(id_evento)})
    if not doc:
        raise NoEncontrado("Evento no encontrado")
    return Evento(**doc)


def comprobar_organizador(evento: Evento, organizador: str):
    if evento.organizador != organizador.lower():
        raise Prohibido(
            "No tienes permisos para realizar esta acción. "
            "Solo el organizador puede modificar el evento."
        )


async def actualizar_evento(col, id_evento: str, organizador: str, cambios: dict) -> Evento:
    actual = await obtener_evento(col, id_evento)
    comprobar_organizador(actual, organizador)

    errores = {
        campo: "Este campo no se puede modificar"
        for campo in cambios if campo not in CAMPOS_EDITABLES
    }
    # Si cambia la dirección, las coordenadas nuevas tienen que venir con ella
    if "lugar" in cambios and cambios["lugar"] != actual.lugar:
        if "lat" not in cambios or "lon" not in cambios:
            errores["lugar"] = "Al cambiar la dirección hay que indicar sus nuevas coordenadas"
    if errores:
        raise ErrorValidacion(errores)

    # Sin comprobar fecha futura: al editar se puede mover el evento
    try:
        nuevo = Evento(**{**actual.model_dump(by_alias=True), **cambios})
    except ValidationError as e:
        raise ErrorValidacion.desde_pydantic(e)

    nuevo.actualizado_en = ahora()
    await col.update_one({"_id": ObjectId(actual.id)}, {"$set": nuevo.a_documento()})
    logger.info("Evento %s actualizado por %s", actual.id, organizador)
    return nuevo


async def eliminar_evento(col, id_evento: str, organizador: str) -> Evento:
    """Borra el evento y lo devuelve, para que quien llama descarte su imagen."""
    evento = await obtener_evento(col, id_evento)
    comprobar_organizador(evento, organizador)
    await col.delete_one({"_id": ObjectId(evento.id)})
    logger.info("Evento %s eliminado por %s", evento.id, organizador)
    return evento


async def listar_proximos(col, limite: int = LIMITE_PROXIMOS) -> List[Evento]:
    # Mongo entiende limit=0 como "sin límite"
    limite = max(1, limite)
    return await _listar(col, {"timestamp": {"$gte": ahora()}}, limite)


async def buscar_cercanos(col, lat: float, lon: float, radio: float = RADIO_CERCANIA) -> List[Evento]:
    # Caja de grados alrededor del punto, no un círculo de verdad
    filtro = {
        "lat": {"$gte": lat - radio, "$lte": lat + radio},
        "lon": {"$gte": lon - radio, "$lte": lon + radio},
        "timestamp": {"$gte": ahora()},
    }
    return await _listar(col, filtro)


async def listar_por_organizador(col, email: str) -> List[Evento]:
    # El organizador ve también sus eventos pasados
    return await _listar(col, {"organizador": email.lower()})
