"""Servicios externos: geocodificación (OpenCage) e imágenes (Cloudinary).

El núcleo nunca los llama directamente; las rutas los usan a través de estas
interfaces y en los tests se cambian por falsos.
"""
import logging
from typing import Optional, Protocol

import cloudinary
import cloudinary.uploader
import httpx
from pydantic import BaseModel

from errores import ErrorGeocodificacion

logger = logging.getLogger(__name__)

OPENCAGE_URL = "https://api.opencagedata.com/geocode/v1/json"
CARPETA_IMAGENES = "eventos"


class Coordenadas(BaseModel):
    lat: float
    lon: float
    formateada: Optional[str] = None


class Geocodificador(Protocol):
    async def geocodificar(self, direccion: str) -> Coordenadas: ...


class AlmacenImagenes(Protocol):
    def subir(self, fichero) -> Optional[str]: ...

    def eliminar(self, url: str) -> bool: ...


class GeocodificadorOpenCage:
    def __init__(self, api_key: Optional[str], timeout: float = 10.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    async def geocodificar(self, direccion: str) -> Coordenadas:
        if not self.api_key:
            raise ErrorGeocodificacion("API Key de geocoding no configurada")

        params = {"q": direccion, "key": self.api_key, "limit": 1, "language": "es"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                resp = await client.get(OPENCAGE_URL, params=params)
                resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("Error en geocoding de %r: %s", direccion, e)
            raise ErrorGeocodificacion("Error llamando al servicio de geocoding")

        resultados = resp.json().get("results") or []
        if not resultados:
            raise ErrorGeocodificacion("No se pudieron obtener coordenadas para esta dirección")

        r = resultados[0]
        return Coordenadas(
            lat=r["geometry"]["lat"],
            lon=r["geometry"]["lng"],
            formateada=r.get("formatted"),
        )


def public_id_desde_url(url: str, carpeta: str = CARPETA_IMAGENES) -> str:
    # .../upload/v123/eventos/abc.webp -> eventos/abc
    nombre = url.rstrip("/").split("/")[-1].split(".")[0]
    return f"{carpeta}/{nombre}"


class AlmacenCloudinary:
    def __init__(self, cloud_name: Optional[str], api_key: Optional[str], api_secret: Optional[str],
                 carpeta: str = CARPETA_IMAGENES):
        cloudinary.config(cloud_name=cloud_name, api_key=api_key, api_secret=api_secret)
        self.carpeta = carpeta

    def subir(self, fichero) -> Optional[str]:
        """Sube la imagen y devuelve su URL segura, o None si no se pudo."""
        try:
            res = cloudinary.uploader.upload(
                fichero,
                folder=self.carpeta,
                resource_type="image",
                transformation=[
                    {"width": 800, "height": 600, "crop": "limit"},
                    {"quality": "auto:good"},
                    {"format": "webp"},
                ],
            )
            return res.get("secure_url")
        except Exception as e:
            logger.warning("Error subiendo imagen a Cloudinary: %s", e)
            return None

    def eliminar(self, url: str) -> bool:
        try:
            res = cloudinary.uploader.destroy(public_id_desde_url(url, self.carpeta))
            return res.get("result") == "ok"
        except Exception as e:
            logger.warning("Error eliminando imagen de Cloudinary: %s", e)
            return False
