import math
from pydantic import BaseModel, Field, field_validator
from typing import Optional, Literal
from usuario import PyObjectId, Email, Instante, ahora  # Reutilizamos los tipos

Categoria = Literal[
    "cultural", "deportivo", "musical", "educativo",
    "gastronómico", "tecnológico", "otro"
]

# Lo que el organizador puede tocar en un PUT
CAMPOS_EDITABLES = {
    "nombre", "timestamp", "lugar", "lat", "lon", "imagen",
    "descripcion", "categoria", "precio", "capacidad"
}


class Evento(BaseModel):
    id: Optional[PyObjectId] = Field(alias="_id", default=None)

    nombre: str = Field(min_length=1, max_length=200)
    timestamp: Instante
    lugar: str = Field(min_length=1, max_length=500)
    lat: float = Field(ge=-90, le=90)
    lon: float = Field(ge=-180, le=180)

    # Guardamos solo el email del creador, es lo que se usa para los permisos
    organizador: Email
    imagen: Optional[str] = Field(default=None, pattern=r"^https?://")

    descripcion: str = Field(default="", max_length=2000)
    categoria: Categoria = "otro"
    precio: float = Field(default=0, ge=0)
    capacidad: Optional[int] = Field(default=None, ge=1)

    creado_en: Optional[Instante] = None
    actualizado_en: Optional[Instante] = None

    class Config:
        populate_by_name = True
        str_strip_whitespace = True
        json_schema_extra = {
            "example": {
                "nombre": "Hackathon Web",
                "timestamp": "2030-05-01T18:00:00Z",
                "lugar": "Facultad de Informática, Madrid",
                "lat": 40.452,
                "lon": -3.733,
                "organizador": "estudiante@ucm.es",
                "categoria": "tecnológico"
            }
        }

    def a_documento(self) -> dict:
        """Lo que se guarda en Mongo (sin id, Mongo pone el _id)."""
        return self.model_dump(by_alias=True, exclude={"id"})

    def a_publico(self) -> dict:
        """Lo que ve el cliente: 'id' en vez de '_id'."""
        return self.model_dump(mode="json")


class EventoCrear(Evento):
    # La fecha futura solo se exige al crear, no al editar
    @field_validator("timestamp")
    @classmethod
    def validar_fecha_futura(cls, v):
        if v <= ahora():
            raise ValueError("La fecha del evento debe ser futura")
        return v


def calcular_distancia(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Distancia euclídea en grados (aproximación plana, NO es distancia geodésica).

    Solo sirve para ordenar resultados cercanos entre sí; la búsqueda de
    cercanos usa la caja de grados, no esta función.
    """
    return math.sqrt((lat1 - lat2) ** 2 + (lon1 - lon2) ** 2)
