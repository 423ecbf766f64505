"""Inicialização da aplicação: schema e usuários padrão."""
from unittest.mock import patch

import pytest

from app import USUARIOS_PADRAO, create_app
from extensions import db
from models import UserRole, Usuario

CONFIG_PRODUCAO = {
    "SQLALCHEMY_DATABASE_URI": "sqlite://",
    "SECRET_KEY": "chave-de-teste",
    "BCRYPT_LOG_ROUNDS": 4,
}


@pytest.fixture
def app_producao():
    app = create_app(dict(CONFIG_PRODUCAO))
    yield app
    with app.app_context():
        db.drop_all()


def test_inicializacao_cria_schema_e_usuarios(app_producao):
    with app_producao.app_context():
        emails = {u.email for u in Usuario.query.all()}
        assert emails == {u["email"] for u in USUARIOS_PADRAO}
        assert UserRole.query.count() == len(USUARIOS_PADRAO)


def test_usuario_padrao_faz_login(app_producao):
    r = app_producao.test_client().post(
        "/auth/login", json={"email": "admin@cantina.com", "password": "123456"}
    )
    assert r.status_code == 200
    assert r.get_json()["user"]["role"] == "admin_normal"


def test_modo_de_teste_nao_prepara_banco():
    with patch("app.garantir_schema") as garantir:
        create_app(dict(CONFIG_PRODUCAO, TESTING=True))
    garantir.assert_not_called()


def test_falha_no_schema_nao_impede_inicializacao():
    with patch("app.garantir_schema", side_effect=RuntimeError("banco fora")):
        app = create_app(dict(CONFIG_PRODUCAO))
    assert app.test_client().get("/health").status_code == 200
