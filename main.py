import json
import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional
from urllib.parse import urlencode

import uvicorn
from fastapi import FastAPI, Request, Form, UploadFile, File, Depends, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool
from starlette.middleware.sessions import SessionMiddleware
from authlib.integrations.starlette_client import OAuth
from motor.motor_asyncio import AsyncIOMotorClient
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

import config
import autenticacion
import eventos_repo
import registro_logins
from errores import ErrorValidacion, registrar_manejadores
from evento import Evento
from limitador import RateLimiter
from login_log import TipoLogin
from servicios import AlmacenCloudinary, AlmacenImagenes, Geocodificador, GeocodificadorOpenCage
from usuario import Usuario, Provider, Instante, ahora, instante_iso

config.configurar_logging()
logger = logging.getLogger(__name__)

# --- DATABASE SETUP (VARIABLES GLOBALES) ---
client = AsyncIOMotorClient(config.MONGO_URI, serverSelectionTimeoutMS=5000)
db = client[config.MONGO_DB]

col_eventos = db["Eventos"]
col_logins = db["LoginLogs"]

# --- SERVICIOS EXTERNOS ---
geocodificador: Geocodificador = GeocodificadorOpenCage(config.OPENCAGE_API_KEY)
almacen_imagenes: AlmacenImagenes = AlmacenCloudinary(
    config.CLOUDINARY_CLOUD_NAME,
    config.CLOUDINARY_API_KEY,
    config.CLOUDINARY_API_SECRET,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        await eventos_repo.asegurar_indices(col_eventos)
        await registro_logins.asegurar_indices(col_logins)
        logger.info("Conectado a MongoDB (%s)", config.MONGO_DB)
    except Exception as e:
        logger.error("Error conectando a MongoDB: %s", e)
        if not config.ES_PRODUCCION:
            raise
    yield
    client.close()


app = FastAPI(title="Eventual API", lifespan=lifespan)
registrar_manejadores(app, config.ES_PRODUCCION)

# 1. MIDDLEWARE
app.add_middleware(SessionMiddleware, secret_key=config.SECRET_KEY, https_only=config.ES_PRODUCCION)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[config.FRONTEND_URL],
    allow_origin_regex=r"https://.*\.vercel\.app" if config.ES_PRODUCCION else r"https?://localhost(:\d+)?",
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
)

rate_limiter = RateLimiter(config.RATE_LIMIT_REQUESTS, config.RATE_LIMIT_WINDOW)


@app.middleware("http")
async def rate_limit_middleware(request: Request, call_next):
    if request.url.path.startswith("/api"):
        client_id = request.client.host if request.client else "unknown"
        if not rate_limiter.allow_request(client_id):
            return JSONResponse(
                {"error": "Demasiadas peticiones desde esta IP, intenta de nuevo más tarde."},
                status_code=429,
            )
    return await call_next(request)


# Se añade el último para ejecutarse el primero: el limitador necesita la IP real
app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=["*"])


# 2. OAUTH
oauth = OAuth()
oauth.register(
    name='google',
    client_id=config.GOOGLE_CLIENT_ID,
    client_secret=config.GOOGLE_CLIENT_SECRET,
    server_metadata_url='https://accounts.google.com/.well-known/openid-configuration',
    client_kwargs={'scope': 'openid email profile'}
)

bearer = HTTPBearer(auto_error=False)


# FUNCIONES DE AYUDA

def get_token(credenciales: Optional[HTTPAuthorizationCredentials] = Depends(bearer)) -> Optional[str]:
    return credenciales.credentials if credenciales else None


async def get_usuario_actual(token: Optional[str] = Depends(get_token)) -> Usuario:
    return await autenticacion.autenticar(col_logins, token)


async def get_evento_propio(id_evento: str, usuario: Usuario = Depends(get_usuario_actual)) -> Evento:
    return await autenticacion.comprobar_propietario(col_eventos, id_evento, usuario.email)


def datos_cliente(request: Request) -> dict:
    return {
        "user_agent": request.headers.get("user-agent", ""),
        "ip_address": request.client.host if request.client else "",
    }


async def subir_imagen(imagen: Optional[UploadFile]) -> Optional[str]:
    if not imagen or not imagen.filename:
        return None
    if imagen.content_type and not imagen.content_type.startswith("image/"):
        raise ErrorValidacion({"imagen": "Solo se permiten archivos de imagen"})
    # El SDK de Cloudinary es bloqueante
    return await run_in_threadpool(almacen_imagenes.subir, imagen.file)


async def descartar_imagen(url: Optional[str]):
    # Si falla nos quedamos con una imagen huérfana, no deshacemos nada
    if url and not await run_in_threadpool(almacen_imagenes.eliminar, url):
        logger.warning("No se pudo eliminar la imagen %s", url)


def ttl_token() -> timedelta:
    return timedelta(hours=config.TOKEN_TTL_HORAS)


# --- RUTAS AUTH ---

@app.get("/api/auth/google")
async def login_google(request: Request):
    if config.BASE_URL:
        redirect_uri = f"{config.BASE_URL}/api/auth/google/callback"
    else:
        # En local: detecta http://localhost:8000/api/auth/google/callback automáticamente
        redirect_uri = request.url_for('auth_google_callback')

    return await oauth.google.authorize_redirect(request, redirect_uri)


@app.get("/api/auth/google/callback")
async def auth_google_callback(request: Request):
    try:
        token_google = await oauth.google.authorize_access_token(request)
        user_info = token_google.get('userinfo')

        usuario = Usuario(
            id=user_info.get("sub"),
            nombre=user_info.get("name") or user_info["email"],
            email=user_info["email"],
            foto=user_info.get("picture"),
            provider="google",
        )
        token = autenticacion.crear_token(usuario)
        await registro_logins.emitir(
            col_logins, usuario.email, ttl_token(), "google", "login",
            token=token, **datos_cliente(request),
        )

        query = urlencode({
            "token": token,
            "user": json.dumps({"email": usuario.email, "name": usuario.nombre, "picture": usuario.foto}),
        })
        return RedirectResponse(f"{config.FRONTEND_URL}/auth/success?{query}")
    except Exception as e:
        logger.error("Error en callback de Google: %s", e)
        return RedirectResponse(f"{config.FRONTEND_URL}/auth/error")


@app.get("/api/auth/verify")
async def verificar(usuario: Usuario = Depends(get_usuario_actual)):
    return {"valid": True, "user": usuario.model_dump(exclude={"foto"})}


@app.post("/api/auth/refresh")
async def renovar(request: Request, usuario: Usuario = Depends(get_usuario_actual)):
    token = autenticacion.crear_token(usuario)
    await registro_logins.emitir(
        col_logins, usuario.email, ttl_token(), usuario.provider, "refresh",
        token=token, **datos_cliente(request),
    )
    return {"token": token, "expiresIn": f"{config.TOKEN_TTL_HORAS}h"}


@app.post("/api/auth/logout")
async def logout(request: Request, usuario: Usuario = Depends(get_usuario_actual),
                 token: Optional[str] = Depends(get_token)):
    await registro_logins.revocar(
        col_logins, usuario.email, token, usuario.provider, **datos_cliente(request)
    )
    request.session.clear()
    return {"message": "Logout exitoso", "timestamp": instante_iso(ahora())}


@app.get("/api/auth/profile")
async def perfil(usuario: Usuario = Depends(get_usuario_actual)):
    logins = await registro_logins.de_usuario(col_logins, usuario.email, 5)
    return {
        "user": usuario.model_dump(exclude={"foto"}),
        "recentLogins": [l.a_publico() for l in logins],
    }


@app.get("/api/auth/config")
async def config_auth():
    return {
        "googleConfigured": bool(config.GOOGLE_CLIENT_ID and config.GOOGLE_CLIENT_SECRET),
        "jwtConfigured": bool(config.JWT_SECRET),
        "environment": config.ENVIRONMENT,
    }


# --- RUTAS EVENTOS ---

class PeticionGeocode(BaseModel):
    address: str


@app.get("/api/events/user/my-events")
async def mis_eventos(usuario: Usuario = Depends(get_usuario_actual)):
    eventos = await eventos_repo.listar_por_organizador(col_eventos, usuario.email)
    return {"count": len(eventos), "events": [e.a_publico() for e in eventos]}


@app.post("/api/events/geocode")
async def geocode(peticion: PeticionGeocode):
    if not peticion.address.strip():
        raise ErrorValidacion({"address": "La dirección es requerida"})
    coords = await geocodificador.geocodificar(peticion.address)
    return {"lat": coords.lat, "lon": coords.lon, "formatted": coords.formateada}


@app.get("/api/events")
async def listar_eventos(lat: Optional[float] = None, lon: Optional[float] = None,
                         address: Optional[str] = None,
                         radio: float = Query(eventos_repo.RADIO_CERCANIA, gt=0, le=10)):
    if lat is not None and lon is not None:
        eventos = await eventos_repo.buscar_cercanos(col_eventos, lat, lon, radio)
    elif address:
        coords = await geocodificador.geocodificar(address)
        eventos = await eventos_repo.buscar_cercanos(col_eventos, coords.lat, coords.lon, radio)
    else:
        eventos = await eventos_repo.listar_proximos(col_eventos)
    return {"count": len(eventos), "events": [e.a_publico() for e in eventos]}


@app.get("/api/events/{id_evento}")
async def detalle_evento(id_evento: str):
    evento = await eventos_repo.obtener_evento(col_eventos, id_evento)
    return evento.a_publico()


@app.post("/api/events", status_code=201)
async def crear_evento(
        usuario: Usuario = Depends(get_usuario_actual),
        nombre: Optional[str] = Form(None),
        timestamp: Optional[str] = Form(None),
        lugar: Optional[str] = Form(None),
        descripcion: Optional[str] = Form(None),
        categoria: Optional[str] = Form(None),
        precio: Optional[str] = Form(None),
        capacidad: Optional[str] = Form(None),
        imagen: UploadFile = File(None)
):
    faltan = [c for c, v in (("nombre", nombre), ("timestamp", timestamp), ("lugar", lugar)) if not v]
    if faltan:
        raise ErrorValidacion(
            {c: "Campo obligatorio" for c in faltan},
            "Faltan campos obligatorios: nombre, timestamp y lugar son requeridos",
        )

    coords = await geocodificador.geocodificar(lugar)
    url_img = await subir_imagen(imagen)

    datos = {
        "nombre": nombre,
        "timestamp": timestamp,
        "lugar": coords.formateada or lugar,
        "lat": coords.lat,
        "lon": coords.lon,
        "imagen": url_img,
        "descripcion": descripcion or "",
        "categoria": categoria or "otro",
        "precio": precio or 0,
        "capacidad": capacidad or None,
    }
    try:
        evento = await eventos_repo.crear_evento(col_eventos, datos, usuario.email)
    except ErrorValidacion:
        await descartar_imagen(url_img)
        raise

    return {"message": "Evento creado exitosamente", "event": evento.a_publico()}


@app.put("/api/events/{id_evento}")
async def actualizar_evento(
        usuario: Usuario = Depends(get_usuario_actual),
        evento: Evento = Depends(get_evento_propio),
        nombre: Optional[str] = Form(None),
        timestamp: Optional[str] = Form(None),
        lugar: Optional[str] = Form(None),
        descripcion: Optional[str] = Form(None),
        categoria: Optional[str] = Form(None),
        precio: Optional[str] = Form(None),
        capacidad: Optional[str] = Form(None),
        imagen: UploadFile = File(None)
):
    cambios = {}
    if nombre:
        cambios["nombre"] = nombre
    if timestamp:
        cambios["timestamp"] = timestamp
    if descripcion is not None:
        cambios["descripcion"] = descripcion
    if categoria:
        cambios["categoria"] = categoria
    if precio is not None:
        cambios["precio"] = precio
    if capacidad is not None:
        cambios["capacidad"] = capacidad or None

    # Si se cambió la dirección, obtener nuevas coordenadas
    if lugar and lugar != evento.lugar:
        coords = await geocodificador.geocodificar(lugar)
        cambios.update(lugar=coords.formateada or lugar, lat=coords.lat, lon=coords.lon)

    url_img = await subir_imagen(imagen)
    if url_img:
        cambios["imagen"] = url_img

    try:
        actualizado = await eventos_repo.actualizar_evento(col_eventos, evento.id, usuario.email, cambios)
    except ErrorValidacion:
        await descartar_imagen(url_img)
        raise

    if url_img:
        await descartar_imagen(evento.imagen)

    return {"message": "Evento actualizado exitosamente", "event": actualizado.a_publico()}


@app.delete("/api/events/{id_evento}")
async def eliminar_evento(usuario: Usuario = Depends(get_usuario_actual),
                          evento: Evento = Depends(get_evento_propio)):
    borrado = await eventos_repo.eliminar_evento(col_eventos, evento.id, usuario.email)
    await descartar_imagen(borrado.imagen)
    return {
        "message": "Evento eliminado exitosamente",
        "deletedEvent": {"id": borrado.id, "nombre": borrado.nombre},
    }


# --- RUTAS LOGS ---

class BusquedaLogs(BaseModel):
    usuario: Optional[str] = None
    provider: Optional[Provider] = None
    tipo_login: Optional[TipoLogin] = None
    desde: Optional[Instante] = None
    hasta: Optional[Instante] = None
    limite: int = 100


@app.get("/api/logs")
async def listar_logs(limit: int = Query(100, ge=1), page: int = Query(1, ge=1), user: Optional[str] = None):
    logs, paginacion = await registro_logins.listar(col_logins, page, limit, user)
    return {"logs": [l.a_publico() for l in logs], "pagination": paginacion}


@app.get("/api/logs/recent")
async def logs_recientes(limit: int = Query(50, ge=1)):
    logs = await registro_logins.recientes(col_logins, min(limit, 500))
    return {"count": len(logs), "logs": [l.a_publico() for l in logs]}


@app.get("/api/logs/my-logs")
async def mis_logs(limit: int = Query(50, ge=1), usuario: Usuario = Depends(get_usuario_actual)):
    logs = await registro_logins.de_usuario(col_logins, usuario.email, min(limit, 200))
    return {"user": usuario.email, "count": len(logs), "logs": [l.a_publico() for l in logs]}


@app.get("/api/logs/user/{email}")
async def logs_de_usuario(email: str, limit: int = Query(50, ge=1)):
    logs = await registro_logins.de_usuario(col_logins, email, min(limit, 200))
    return {"user": email, "count": len(logs), "logs": [l.a_publico() for l in logs]}


@app.get("/api/logs/stats")
async def estadisticas_logs():
    stats = await registro_logins.estadisticas(col_logins)
    return {
        "total": stats["total"],
        "uniqueUsers": stats["usuarios_unicos"],
        "logsLastWeek": stats["ultimos_dias"],
        "breakdown": {
            "byType": stats["por_tipo"],
            "byProvider": stats["por_provider"],
            "byDay": stats["por_dia"],
        },
    }


@app.delete("/api/logs/cleanup")
async def limpiar_logs():
    borrados = await registro_logins.purgar_caducados(col_logins)
    return {"message": "Limpieza completada", "deletedCount": borrados}


@app.post("/api/logs/search")
async def buscar_logs(busqueda: BusquedaLogs):
    logs = await registro_logins.buscar(col_logins, **busqueda.model_dump())
    return {
        "query": busqueda.model_dump(mode="json"),
        "count": len(logs),
        "logs": [l.a_publico() for l in logs],
    }


@app.get("/api/health")
async def health():
    try:
        await client.admin.command("ping")
        mongodb = "connected"
    except Exception:
        mongodb = "disconnected"
    return {
        "status": "OK",
        "timestamp": instante_iso(ahora()),
        "environment": config.ENVIRONMENT,
        "mongodb": mongodb,
    }


if __name__ == "__main__":
    uvicorn.run("main:app", host="127.0.0.1", port=8000, reload=not config.ES_PRODUCCION)
