from pydantic import BaseModel, Field, computed_field, model_validator
from typing import Optional, Literal
from datetime import timedelta
from usuario import PyObjectId, Email, Instante, Provider, ahora

TipoLogin = Literal["login", "refresh", "logout"]

# Ninguna sesión dura más de esto, pida lo que pida quien llama
CADUCIDAD_MAXIMA = timedelta(days=30)
LARGO_PREVIEW = 10
# Más largo que cualquier preview ("..." incluido), así el preview nunca puede contener el token
LARGO_MINIMO_TOKEN = 16


def preview_token(token: str) -> str:
    visibles = min(LARGO_PREVIEW, len(token) // 2)
    return token[:visibles] + "..."


class LoginLog(BaseModel):
    id: Optional[PyObjectId] = Field(alias="_id", default=None)

    timestamp: Instante = Field(default_factory=ahora)
    usuario: Email
    caducidad: Instante
    token: str = Field(min_length=LARGO_MINIMO_TOKEN, exclude=True)
    provider: Provider = "google"
    tipo_login: TipoLogin = "login"

    # Diagnóstico
    user_agent: str = ""
    ip_address: str = ""

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "usuario": "estudiante@ucm.es",
                "caducidad": "2030-05-02T18:00:00Z",
                "provider": "google",
                "tipo_login": "login"
            }
        }

    @model_validator(mode="after")
    def validar_caducidad(self):
        if self.caducidad <= self.timestamp:
            raise ValueError("La fecha de caducidad debe ser posterior al login")
        # Recorte a 30 días como mucho
        maxima = self.timestamp + CADUCIDAD_MAXIMA
        if self.caducidad > maxima:
            self.caducidad = maxima
        return self

    @computed_field
    @property
    def tokenPreview(self) -> str:
        return preview_token(self.token)

    def a_documento(self) -> dict:
        # El token sí se guarda (hace falta para validarlo), solo se oculta al serializar
        doc = self.model_dump(by_alias=True, exclude={"id", "tokenPreview"})
        doc["token"] = self.token
        return doc

    def a_publico(self) -> dict:
        return self.model_dump(mode="json")
