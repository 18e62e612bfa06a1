"""Errores de la aplicación y su traducción a respuestas HTTP."""
import logging
import traceback
from typing import Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

logger = logging.getLogger(__name__)


class ErrorApp(Exception):
    status_code = 500
    mensaje = "Error interno del servidor"

    def __init__(self, mensaje: Optional[str] = None):
        super().__init__(mensaje or self.mensaje)
        self.mensaje = mensaje or self.mensaje

    def detalles(self):
        return None


class ErrorValidacion(ErrorApp):
    status_code = 400
    mensaje = "Error de validación"

    def __init__(self, errores: Dict[str, str], mensaje: Optional[str] = None):
        super().__init__(mensaje)
        # campo -> mensaje, todos los problemas a la vez
        self.errores = errores

    def detalles(self):
        return self.errores

    @classmethod
    def desde_pydantic(cls, error: ValidationError) -> "ErrorValidacion":
        errores = {}
        for e in error.errors():
            campo = ".".join(str(p) for p in e["loc"]) or "__root__"
            mensaje = e["msg"]
            if mensaje.startswith("Value error, "):
                mensaje = mensaje[len("Value error, "):]
            # Nos quedamos con el primer mensaje de cada campo
            errores.setdefault(campo, mensaje)
        return cls(errores)


class ErrorGeocodificacion(ErrorApp):
    status_code = 400
    mensaje = "No se pudieron obtener las coordenadas de la dirección"


class NoEncontrado(ErrorApp):
    status_code = 404
    mensaje = "Recurso no encontrado"


class Prohibido(ErrorApp):
    status_code = 403
    mensaje = "No tienes permisos para realizar esta acción"


class NoAutenticado(ErrorApp):
    status_code = 401
    mensaje = "No autenticado"


def registrar_manejadores(app, es_produccion: bool):
    """Engancha los errores de la app a FastAPI."""

    @app.exception_handler(ErrorApp)
    async def manejar_error_app(request: Request, exc: ErrorApp):
        cuerpo = {"error": exc.mensaje}
        if exc.detalles() is not None:
            cuerpo["detalles"] = exc.detalles()
        headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, NoAutenticado) else None
        return JSONResponse(cuerpo, status_code=exc.status_code, headers=headers)

    @app.exception_handler(Exception)
    async def manejar_error_inesperado(request: Request, exc: Exception):
        logger.exception("Error no manejado en %s %s", request.method, request.url.path)
        if es_produccion:
            return JSONResponse({"error": "Error interno del servidor"}, status_code=500)
        return JSONResponse(
            {"error": str(exc), "stack": traceback.format_exception(exc)},
            status_code=500,
        )
