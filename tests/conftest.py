from datetime import timedelta

import pytest
from mongomock_motor import AsyncMongoMockClient

from usuario import ahora


@pytest.fixture
def db():
    return AsyncMongoMockClient()["EventualTest"]


@pytest.fixture
def col_eventos(db):
    return db["Eventos"]


@pytest.fixture
def col_logins(db):
    return db["LoginLogs"]


@pytest.fixture
def manana():
    return (ahora() + timedelta(days=1)).replace(microsecond=0)


@pytest.fixture
def datos_evento(manana):
    return {
        "nombre": "Concert",
        "timestamp": manana,
        "lugar": "Plaza Mayor, Madrid",
        "lat": 40.0,
        "lon": -3.0,
        "descripcion": "Concierto al aire libre",
        "categoria": "musical",
        "precio": 12.5,
        "capacidad": 300,
    }
