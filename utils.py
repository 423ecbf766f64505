# utils.py
import re
from datetime import date, datetime, timezone
from functools import wraps

from flask import current_app, g, jsonify, request
from itsdangerous import BadData, URLSafeTimedSerializer
from sqlalchemy import Boolean, Date, DateTime, Float, Integer, Numeric

from extensions import bcrypt, db
from models import Log

TOKEN_SALT = "cantina-auth-token"

FORMATOS_DATA_ALTERNATIVOS = ("%d-%m-%Y", "%Y/%m/%d", "%d.%m.%Y")


def erro(mensagem, status):
    return jsonify({"error": mensagem}), status


# ==========================================================
# DATAS
# ==========================================================

def normalizar_data(valor):
    """
    Converte datas nos formatos aceitos pelo frontend para 'YYYY-MM-DD'.
    Aceita ISO (com ou sem hora), dd/mm/aaaa e objetos date/datetime.
    Retorna None quando não reconhece o valor.
    """
    if valor is None or valor == "":
        return None
    if isinstance(valor, datetime):
        return valor.date().isoformat()
    if isinstance(valor, date):
        return valor.isoformat()

    s = str(valor).strip()
    if re.match(r"^\d{4}-\d{2}-\d{2}", s):
        s = s.split("T")[0].split(" ")[0]
        try:
            return date.fromisoformat(s).isoformat()
        except ValueError:
            return None

    br = re.match(r"^(\d{2})/(\d{2})/(\d{4})$", s)
    if br:
        dd, mm, yyyy = br.groups()
        try:
            return date(int(yyyy), int(mm), int(dd)).isoformat()
        except ValueError:
            return None

    for formato in FORMATOS_DATA_ALTERNATIVOS:
        try:
            return datetime.strptime(s, formato).date().isoformat()
        except ValueError:
            continue
    return None


def parse_datetime(valor):
    """ISO-8601 para datetime ingênuo em UTC (o banco guarda UTC sem fuso)."""
    if isinstance(valor, datetime):
        dt = valor
    else:
        s = str(valor).strip()
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        dt = datetime.fromisoformat(s)
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def converter_valor(coluna, valor):
    """Converte um valor vindo do JSON/query string para o tipo da coluna. Levanta ValueError."""
    if valor is None:
        return None
    tipo = coluna.type
    if isinstance(tipo, DateTime):
        return parse_datetime(valor)
    if isinstance(tipo, Date):
        normalizada = normalizar_data(valor)
        if normalizada is None:
            raise ValueError(f"Data inválida para {coluna.name}: {valor}")
        return date.fromisoformat(normalizada)
    if isinstance(tipo, Boolean):
        if isinstance(valor, bool):
            return valor
        texto = str(valor).strip().lower()
        if texto in ("true", "1", "t"):
            return True
        if texto in ("false", "0", "f"):
            return False
        raise ValueError(f"Valor booleano inválido para {coluna.name}: {valor}")
    if isinstance(tipo, Integer):
        return int(valor)
    if isinstance(tipo, (Float, Numeric)):
        return float(valor)
    return str(valor) if not isinstance(valor, str) else valor


def serializar_registro(registro, ocultar=("password_hash",)):
    """Linha do banco para dict JSON, sem o hash de senha."""
    dados = {}
    for coluna in registro.__table__.columns:
        if coluna.name in ocultar:
            continue
        valor = getattr(registro, coluna.key)
        if isinstance(valor, (date, datetime)):
            valor = valor.isoformat()
        dados[coluna.name] = valor
    return dados


# ==========================================================
# SENHAS E TOKENS
# ==========================================================

def gerar_hash_senha(senha):
    return bcrypt.generate_password_hash(str(senha)).decode("utf-8")


def _serializer():
    return URLSafeTimedSerializer(current_app.config["SECRET_KEY"])


def gerar_token(usuario):
    return _serializer().dumps(
        {"user_id": usuario.id, "email": usuario.email, "role": usuario.role},
        salt=TOKEN_SALT,
    )


def verificar_token(token):
    """Retorna o payload do token ou None se inválido/expirado."""
    try:
        return _serializer().loads(
            token, salt=TOKEN_SALT, max_age=current_app.config["TOKEN_MAX_AGE"]
        )
    except BadData:
        return None


def token_required(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        partes = request.headers.get("Authorization", "").split(" ")
        if len(partes) != 2 or partes[0] != "Bearer" or not partes[1]:
            return erro("Token ausente", 401)
        payload = verificar_token(partes[1])
        if not payload:
            return erro("Token inválido", 401)
        g.usuario = payload
        return f(*args, **kwargs)
    return decorated_function


def role_required(*roles_permitidos):
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            permissao_usuario = g.usuario.get("role")
            if permissao_usuario == "super_admin":
                return f(*args, **kwargs)
            if permissao_usuario in roles_permitidos:
                return f(*args, **kwargs)
            return erro("Permissão negada", 403)
        return decorated_function
    return decorator


# ==========================================================
# AUDITORIA
# ==========================================================

def registrar_log(action):
    try:
        usuario = getattr(g, "usuario", None) or {}
        log_entry = Log(
            username=usuario.get("email", "Anônimo"),
            action=action[:255],
            ip_address=request.remote_addr,
        )
        db.session.add(log_entry)
        db.session.commit()
    except Exception:
        current_app.logger.warning("Erro ao registrar log: %s", action, exc_info=True)
        db.session.rollback()
