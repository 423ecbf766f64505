# ===================================================================
# PARTE 1: Importações
# ===================================================================
import os
from datetime import datetime

import click
from dotenv import load_dotenv
from flask import Flask, jsonify
from sqlalchemy.engine import URL
from werkzeug.exceptions import HTTPException

load_dotenv()

from extensions import bcrypt, cors, db, migrate
from models import Aluno, UserRole, Usuario
from utils import gerar_hash_senha

basedir = os.path.abspath(os.path.dirname(__file__))

# Origens do frontend em desenvolvimento (Vite em qualquer porta)
CORS_ORIGINS_PADRAO = [
    r"^http://localhost:\d+$",
    r"^http://127\.0\.0\.1:\d+$",
    r"^http://\[::1\]:\d+$",
]

USUARIOS_PADRAO = [
    {"email": "superadmin@cantina.com", "full_name": "Super Administrador", "role": "super_admin", "password": "123456"},
    {"email": "admin@cantina.com", "full_name": "Administrador", "role": "admin_normal", "password": "123456"},
    {"email": "user@cantina.com", "full_name": "Usuário", "role": "user", "password": "123456"},
]


# ===================================================================
# PARTE 2: Configuração
# ===================================================================

def _env(*nomes, padrao=None):
    for nome in nomes:
        valor = os.environ.get(nome)
        if valor:
            return valor
    return padrao


def montar_database_url():
    database_url = os.environ.get("DATABASE_URL")
    if database_url:
        # Alguns provedores ainda entregam o esquema antigo
        if database_url.startswith("postgres://"):
            database_url = database_url.replace("postgres://", "postgresql://", 1)
        return database_url

    host = _env("POSTGRES_HOST", "LOCAL_DB_HOST")
    if host:
        return URL.create(
            "postgresql",
            username=_env("POSTGRES_USER", "LOCAL_DB_USER", padrao="cantina_user"),
            password=_env("POSTGRES_PASSWORD", "LOCAL_DB_PASSWORD", padrao="cantina_password"),
            host=host,
            port=int(_env("POSTGRES_PORT", "LOCAL_DB_PORT", padrao="5432")),
            database=_env("POSTGRES_DB", "LOCAL_DB_NAME", padrao="cantina_verde"),
        ).render_as_string(hide_password=False)

    # Sem Postgres configurado, usa o banco SQLite local
    return "sqlite:///" + os.path.join(basedir, "cantina.db")


def carregar_configuracao(app, config=None):
    app.config["SQLALCHEMY_DATABASE_URI"] = montar_database_url()
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = {"pool_pre_ping": True}
    app.config["SECRET_KEY"] = _env("LOCAL_JWT_SECRET", "SECRET_KEY", padrao="dev_secret_change_me")
    app.config["TOKEN_MAX_AGE"] = int(os.environ.get("TOKEN_MAX_AGE", 8 * 60 * 60))
    app.config["BCRYPT_LOG_ROUNDS"] = int(os.environ.get("BCRYPT_LOG_ROUNDS", 10))
    app.config["JANELA_LIBERACAO_MINUTOS"] = int(os.environ.get("JANELA_LIBERACAO_MINUTOS", 60))
    app.config["LOG_LEVEL"] = os.environ.get("LOG_LEVEL", "INFO").upper()

    origens = os.environ.get("CORS_ORIGINS")
    app.config["CORS_ORIGINS"] = origens.split(",") if origens else CORS_ORIGINS_PADRAO

    if config:
        app.config.update(config)


# ===================================================================
# PARTE 3: Esquema e dados iniciais
# ===================================================================

def garantir_schema():
    """Cria as tabelas, completa numero_pasta e garante os usuários padrão."""
    db.create_all()

    sem_pasta = Aluno.query.filter(Aluno.numero_pasta.is_(None), Aluno.matricula.isnot(None)).all()
    for aluno in sem_pasta:
        aluno.numero_pasta = aluno.matricula[-4:]

    for dados in USUARIOS_PADRAO:
        salvar_usuario(dados["email"], dados["full_name"], dados["role"], dados["password"])

    db.session.commit()


def salvar_usuario(email, full_name, role, password):
    """Cria ou atualiza o usuário e garante o vínculo em user_roles (sem commit)."""
    usuario = Usuario.query.filter_by(email=email).first()
    if usuario:
        usuario.full_name = full_name
        usuario.role = role
        usuario.password_hash = gerar_hash_senha(password)
    else:
        usuario = Usuario(email=email, full_name=full_name, role=role, password_hash=gerar_hash_senha(password))
        db.session.add(usuario)
        db.session.flush()

    if not UserRole.query.filter_by(user_id=usuario.id, role=role).first():
        db.session.add(UserRole(user_id=usuario.id, role=role))
    return usuario


# ===================================================================
# PARTE 4: Comandos CLI e tratamento de erros
# ===================================================================

def registrar_comandos(app):
    @app.cli.command("init-db")
    def init_db_command():
        """Cria as tabelas e os usuários padrão."""
        garantir_schema()
        click.echo("Banco de dados inicializado e usuários padrão garantidos.")

    @app.cli.command("create-user")
    @click.argument("email")
    @click.option("--nome", "full_name", required=True, help="Nome completo do usuário.")
    @click.option(
        "--role",
        type=click.Choice(["user", "admin_normal", "super_admin"]),
        default="user",
        show_default=True,
    )
    @click.password_option()
    def create_user_command(email, full_name, role, password):
        """Cria (ou atualiza) um usuário a partir da linha de comando."""
        salvar_usuario(email, full_name, role, password)
        db.session.commit()
        click.echo(f"Usuário '{email}' salvo com o papel '{role}'.")


def registrar_tratamento_erros(app):
    @app.errorhandler(HTTPException)
    def erro_http(e):
        mensagens = {404: "Rota não encontrada", 405: "Método não permitido"}
        return jsonify({"error": mensagens.get(e.code, e.name)}), e.code

    @app.errorhandler(Exception)
    def erro_inesperado(e):
        db.session.rollback()
        app.logger.exception("Exceção não tratada")
        return jsonify({"error": "Erro interno"}), 500


# ===================================================================
# PARTE 5: Fábrica da aplicação
# ===================================================================

def create_app(config=None):
    app = Flask(__name__)
    carregar_configuracao(app, config)
    app.logger.setLevel(app.config["LOG_LEVEL"])

    db.init_app(app)
    bcrypt.init_app(app)
    migrate.init_app(app, db)
    cors.init_app(app, origins=app.config["CORS_ORIGINS"])

    from auth_routes import auth_bp
    from api_routes import api_bp
    from almoxarifado_routes import almoxarifado_bp
    from merenda_routes import merenda_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(api_bp)
    app.register_blueprint(almoxarifado_bp)
    app.register_blueprint(merenda_bp)

    @app.route("/health")
    def health():
        return jsonify({"status": "ok", "time": datetime.now().isoformat()})

    registrar_comandos(app)
    registrar_tratamento_erros(app)

    # Fora dos testes o banco é preparado a cada inicialização
    if not app.config.get("TESTING"):
        with app.app_context():
            try:
                garantir_schema()
            except Exception:
                db.session.rollback()
                app.logger.exception("Erro ao inicializar schema/seed")
    return app


# ===================================================================
# PARTE 6: Bloco de Execução Principal
# ===================================================================

if __name__ == "__main__":
    app = create_app()
    app.run(port=int(os.environ.get("LOCAL_AUTH_PORT", 4000)))
