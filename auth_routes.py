# auth_routes.py
from flask import Blueprint, current_app, g, jsonify, request

from extensions import bcrypt, db
from models import Usuario
from utils import erro, gerar_token, token_required

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


def _usuario_publico(usuario):
    return {
        "id": usuario.id,
        "email": usuario.email,
        "full_name": usuario.full_name,
        "role": usuario.role,
    }


@auth_bp.route("/login", methods=["POST"])
def login():
    dados = request.get_json(silent=True) or {}
    email = dados.get("email")
    password = dados.get("password")
    if not email or not password:
        return erro("Email e senha obrigatórios", 400)

    try:
        usuario = Usuario.query.filter_by(email=email).first()
        if not usuario or not usuario.password_hash:
            return erro("Credenciais inválidas", 401)
        if not bcrypt.check_password_hash(usuario.password_hash, str(password)):
            return erro("Credenciais inválidas", 401)
    except Exception:
        current_app.logger.exception("Erro no login")
        return erro("Erro interno", 500)

    current_app.logger.info("Login de %s (%s)", usuario.email, usuario.role)
    return jsonify({"token": gerar_token(usuario), "user": _usuario_publico(usuario)})


@auth_bp.route("/me", methods=["GET"])
@token_required
def me():
    try:
        usuario = db.session.get(Usuario, g.usuario.get("user_id"))
    except Exception:
        current_app.logger.exception("Erro ao buscar usuário atual")
        return erro("Erro interno", 500)
    if not usuario:
        return erro("Usuário não encontrado", 404)
    return jsonify({"user": _usuario_publico(usuario)})
