"""Fixtures compartilhadas: app com SQLite em memória, tokens por papel e dados de exemplo."""
from datetime import date

import pytest

from app import create_app, salvar_usuario
from extensions import db as _db
from models import Aluno, Cardapio, Produto, Turma, Usuario
from utils import gerar_token


@pytest.fixture
def app():
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite://",
        "SECRET_KEY": "chave-de-teste",
        "BCRYPT_LOG_ROUNDS": 4,
    })
    with app.app_context():
        _db.create_all()
    yield app
    with app.app_context():
        _db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def usuarios(app):
    """Um usuário por papel; retorna {role: id}."""
    with app.app_context():
        ids = {}
        for role in ("super_admin", "admin_normal", "user"):
            usuario = salvar_usuario(f"{role}@cantina.com", role.title(), role, "123456")
            ids[role] = usuario.id
        _db.session.commit()
        return ids


@pytest.fixture
def tokens(app, usuarios):
    with app.app_context():
        tokens = {}
        for role, usuario_id in usuarios.items():
            usuario = _db.session.get(Usuario, usuario_id)
            tokens[role] = gerar_token(usuario)
        return tokens


@pytest.fixture
def auth(tokens):
    def _headers(role):
        return {"Authorization": f"Bearer {tokens[role]}"}
    return _headers


@pytest.fixture
def dados(app):
    """Turma, dois alunos, dois produtos e dois cardápios (um ativo)."""
    with app.app_context():
        turma = Turma(nome="6º Ano - A")
        _db.session.add(turma)
        _db.session.flush()

        bolsista = Aluno(
            nome="Ana Souza", matricula="202400000001", numero_pasta="0001",
            e_bolsista=True, turma_id=turma.id,
        )
        pagante = Aluno(
            nome="Bruno Lima", matricula="202400000002", numero_pasta="0002",
            e_bolsista=False, turma_id=None,
        )
        arroz = Produto(nome="Arroz", categoria="nao_pereciveis", unidade="KG",
                        quantidade_estoque=10, quantidade_minima=5)
        suco = Produto(nome="Suco", categoria="bebidas", unidade="L",
                       quantidade_estoque=2, quantidade_minima=5)
        lanche = Cardapio(nome="Lanche da Semana", data_inicio=date(2025, 3, 3),
                          data_fim=date(2025, 3, 7), tipo_refeicao="lanche", ativo=True)
        almoco = Cardapio(nome="Almoço da Semana", data_inicio=date(2025, 3, 3),
                          data_fim=date(2025, 3, 7), tipo_refeicao="almoco", ativo=False)
        _db.session.add_all([bolsista, pagante, arroz, suco, lanche, almoco])
        _db.session.commit()
        return {
            "turma": turma.id,
            "bolsista": bolsista.id,
            "pagante": pagante.id,
            "arroz": arroz.id,
            "suco": suco.id,
            "lanche": lanche.id,
            "almoco": almoco.id,
        }
