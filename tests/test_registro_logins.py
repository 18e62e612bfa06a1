"""Registro de logins: emisión, recorte de caducidad, revocación, purga y consultas."""
import asyncio
import json
from datetime import timedelta

import pytest

import registro_logins
from errores import ErrorValidacion
from login_log import LoginLog, preview_token
from usuario import ahora

TOKEN = "eyJhbGciOiJIUzI1NiJ9.token-de-prueba.firma"


def _token(sufijo):
    return f"{TOKEN}-{sufijo}"


async def _insertar(col, usuario="a@x.com", hace=timedelta(0), dura=timedelta(hours=1),
                    tipo_login="login", provider="google", token=TOKEN):
    momento = ahora() - hace
    await col.insert_one({
        "timestamp": momento,
        "usuario": usuario,
        "caducidad": momento + dura,
        "token": token,
        "provider": provider,
        "tipo_login": tipo_login,
        "user_agent": "",
        "ip_address": "",
    })


async def test_emitir_sin_recorte(col_logins):
    entrada = await registro_logins.emitir(col_logins, "A@X.com", timedelta(hours=48), token=TOKEN)

    assert entrada.usuario == "a@x.com"
    assert entrada.caducidad == entrada.timestamp + timedelta(hours=48)
    assert entrada.tipo_login == "login"
    assert await col_logins.count_documents({}) == 1


async def test_emitir_recorta_a_treinta_dias(col_logins):
    entrada = await registro_logins.emitir(col_logins, "a@x.com", timedelta(days=90), token=TOKEN)
    guardada = LoginLog(**await col_logins.find_one({}))

    assert entrada.caducidad == entrada.timestamp + timedelta(days=30)
    assert guardada.caducidad == guardada.timestamp + timedelta(days=30)


def test_el_modelo_tambien_recorta():
    momento = ahora()
    entrada = LoginLog(usuario="a@x.com", timestamp=momento,
                       caducidad=momento + timedelta(days=31), token=TOKEN)

    assert entrada.caducidad == momento + timedelta(days=30)


async def test_caducidad_tiene_que_ser_posterior(col_logins):
    with pytest.raises(ErrorValidacion):
        await registro_logins.emitir(col_logins, "a@x.com", timedelta(0), token=TOKEN)
    assert await col_logins.count_documents({}) == 0


@pytest.mark.parametrize("campos", [
    {"provider": "github"},
    {"tipo_login": "sso"},
    {"usuario": "sin-arroba"},
])
async def test_valores_desconocidos_se_rechazan(col_logins, campos):
    args = {"usuario": "a@x.com", "provider": "google", "tipo_login": "login"}
    args.update(campos)

    with pytest.raises(ErrorValidacion) as exc:
        await registro_logins.emitir(col_logins, ttl=timedelta(hours=1), token=TOKEN, **args)

    assert set(exc.value.errores) == set(campos)


async def test_es_token_valido(col_logins):
    await registro_logins.emitir(col_logins, "a@x.com", timedelta(hours=1), token=TOKEN)
    await _insertar(col_logins, token="viejo", hace=timedelta(hours=3))

    assert (await registro_logins.es_token_valido(col_logins, TOKEN)).usuario == "a@x.com"
    assert await registro_logins.es_token_valido(col_logins, "viejo") is None
    assert await registro_logins.es_token_valido(col_logins, "otro") is None


async def test_revocar_no_borra_la_entrada_original(col_logins):
    await registro_logins.emitir(col_logins, "a@x.com", timedelta(hours=1), token=TOKEN)
    assert await registro_logins.sesion_activa(col_logins, "a@x.com")

    logout = await registro_logins.revocar(col_logins, "a@x.com", TOKEN)

    assert logout.tipo_login == "logout"
    assert logout.caducidad > logout.timestamp
    assert await col_logins.count_documents({}) == 2
    assert await col_logins.count_documents({"tipo_login": "login"}) == 1
    assert await registro_logins.token_revocado(col_logins, TOKEN)
    assert await registro_logins.sesion_activa(col_logins, "a@x.com") is None


async def test_login_despues_de_logout_vuelve_a_estar_activo(col_logins):
    await registro_logins.emitir(col_logins, "a@x.com", timedelta(hours=1), token=TOKEN)
    await registro_logins.revocar(col_logins, "a@x.com", TOKEN)
    await asyncio.sleep(0.005)

    nueva = await registro_logins.emitir(col_logins, "a@x.com", timedelta(hours=1), token=_token("nuevo"))

    activa = await registro_logins.sesion_activa(col_logins, "A@x.com")
    assert activa.token == nueva.token


async def test_sesion_activa_ignora_caducadas_y_otros_usuarios(col_logins):
    await _insertar(col_logins, hace=timedelta(hours=2))
    await registro_logins.emitir(col_logins, "b@x.com", timedelta(hours=1), token=TOKEN)

    assert await registro_logins.sesion_activa(col_logins, "a@x.com") is None
    assert await registro_logins.sesion_activa(col_logins, "b@x.com")


async def test_purgar_caducados(col_logins):
    await _insertar(col_logins, token="c1", hace=timedelta(days=2))
    await _insertar(col_logins, token="c2", hace=timedelta(hours=5), dura=timedelta(hours=1))
    await registro_logins.emitir(col_logins, "a@x.com", timedelta(hours=1), token=_token("vivo"))
    await registro_logins.emitir(col_logins, "b@x.com", timedelta(days=40), token=_token("largo"))

    assert await registro_logins.purgar_caducados(col_logins) == 2
    assert await registro_logins.purgar_caducados(col_logins) == 0

    quedan = {doc["token"] async for doc in col_logins.find({})}
    assert quedan == {_token("vivo"), _token("largo")}


async def test_recientes_ordenados_y_sin_token(col_logins):
    for i in range(4):
        await _insertar(col_logins, token=f"{TOKEN}-{i}", hace=timedelta(minutes=i))

    logs = await registro_logins.recientes(col_logins, limite=3)

    assert [l.token for l in logs] == [f"{TOKEN}-0", f"{TOKEN}-1", f"{TOKEN}-2"]
    for l in logs:
        publico = l.a_publico()
        assert "token" not in publico
        assert publico["tokenPreview"] == l.token[:10] + "..."
        assert l.token not in json.dumps(publico)


@pytest.mark.parametrize("token", ["x" * 16, "." * 16, "." * 20, "abc...abc...abc.", TOKEN])
def test_preview_nunca_contiene_el_token(token):
    assert token not in preview_token(token)
    assert preview_token(token).endswith("...")


@pytest.mark.parametrize("token", [".", "..", "abcdef", "x" * 15])
async def test_tokens_cortos_se_rechazan(col_logins, token):
    with pytest.raises(ErrorValidacion) as exc:
        await registro_logins.emitir(col_logins, "a@x.com", timedelta(hours=1), token=token)

    assert set(exc.value.errores) == {"token"}
    assert await col_logins.count_documents({}) == 0


async def test_de_usuario(col_logins):
    for i in range(3):
        await _insertar(col_logins, usuario="a@x.com", hace=timedelta(minutes=i), token=_token(f"a{i}"))
    await _insertar(col_logins, usuario="b@x.com", token=_token("b0"))

    logs = await registro_logins.de_usuario(col_logins, "A@X.COM", limite=2)

    assert [l.token for l in logs] == [_token("a0"), _token("a1")]


async def test_listar_paginado(col_logins):
    for i in range(5):
        await _insertar(col_logins, hace=timedelta(minutes=i), token=_token(i))

    logs, paginacion = await registro_logins.listar(col_logins, pagina=2, limite=2)

    assert [l.token for l in logs] == [_token(2), _token(3)]
    assert paginacion == {
        "total": 5, "page": 2, "limit": 2, "totalPages": 3, "hasNext": True, "hasPrev": True,
    }


async def test_buscar(col_logins):
    await _insertar(col_logins, usuario="ana@ucm.es", provider="google", token=_token("t1"))
    await _insertar(col_logins, usuario="ana@ucm.es", provider="facebook", tipo_login="refresh",
                    hace=timedelta(days=3), token=_token("t2"))
    await _insertar(col_logins, usuario="luis@ucm.es", provider="local", token=_token("t3"))

    ana = await registro_logins.buscar(col_logins, usuario="ANA")
    assert {l.token for l in ana} == {_token("t1"), _token("t2")}
    assert [l.token for l in await registro_logins.buscar(col_logins, provider="local")] == [_token("t3")]
    assert [l.token for l in await registro_logins.buscar(col_logins, tipo_login="refresh")] == [_token("t2")]
    recientes = await registro_logins.buscar(col_logins, desde=ahora() - timedelta(days=1))
    assert {l.token for l in recientes} == {_token("t1"), _token("t3")}
    # Los caracteres de regex se buscan tal cual
    assert await registro_logins.buscar(col_logins, usuario=".*") == []


async def test_estadisticas(col_logins):
    await _insertar(col_logins, usuario="a@x.com", token="t1")
    await _insertar(col_logins, usuario="a@x.com", tipo_login="refresh", token="t2")
    await _insertar(col_logins, usuario="b@x.com", provider="facebook", token="t3")
    await _insertar(col_logins, usuario="c@x.com", hace=timedelta(days=10), token="t4")

    stats = await registro_logins.estadisticas(col_logins)

    assert stats["total"] == 4
    assert stats["usuarios_unicos"] == 3
    assert stats["ultimos_dias"] == 3
    assert stats["por_tipo"] == {"login": 3, "refresh": 1}
    assert stats["por_provider"] == {"google": 3, "facebook": 1}
    assert sum(d["count"] for d in stats["por_dia"]) == 3
    assert [d["date"] for d in stats["por_dia"]] == sorted(d["date"] for d in stats["por_dia"])
    # Solo lectura
    assert await col_logins.count_documents({}) == 4
