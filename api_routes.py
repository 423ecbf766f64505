# api_routes.py
"""
API genérica de dados: listagem, busca, criação, edição e remoção sobre as
tabelas expostas em models.TABELAS.

A listagem aceita filtros no estilo PostgREST, avaliados no banco:
    /api/liberacoes_lanche?aluno_id=eq.<id>&data_liberacao=gte.2025-03-01&order=data_liberacao.desc&limit=5
"""
import csv

from flask import Blueprint, current_app, g, jsonify, request
from sqlalchemy import update

from extensions import db
from models import (
    TABELAS,
    Aluno,
    Cardapio,
    LiberacaoLanche,
    MovimentacaoEstoque,
    Produto,
    Turma,
    UserRole,
)
from permissoes import tem_permissao
from utils import (
    converter_valor,
    erro,
    gerar_hash_senha,
    registrar_log,
    serializar_registro,
    token_required,
)

api_bp = Blueprint("api", __name__, url_prefix="/api")

PARAMETROS_RESERVADOS = ("select", "order", "limit", "offset")
OPERADORES = {
    "eq": lambda coluna, valor: coluna.is_(None) if valor is None else coluna == valor,
    "neq": lambda coluna, valor: coluna.isnot(None) if valor is None else coluna != valor,
    "gt": lambda coluna, valor: coluna > valor,
    "gte": lambda coluna, valor: coluna >= valor,
    "lt": lambda coluna, valor: coluna < valor,
    "lte": lambda coluna, valor: coluna <= valor,
}


class DadosInvalidos(ValueError):
    """Erro de validação de filtro ou payload (HTTP 400)."""


# ==========================================================
# FILTROS, ORDENAÇÃO E PAGINAÇÃO
# ==========================================================

def _coluna(modelo, nome):
    coluna = modelo.__table__.columns.get(nome)
    if coluna is None:
        raise DadosInvalidos(f"Coluna desconhecida: {nome}")
    return coluna


def _converter(coluna, bruto):
    if bruto == "null":
        return None
    try:
        return converter_valor(coluna, bruto)
    except (TypeError, ValueError) as e:
        raise DadosInvalidos(str(e))


def itens_in(bruto):
    """Itens de in.(a,"b,c") com aspas e barra invertida no estilo PostgREST."""
    texto = bruto.strip()
    if not (texto.startswith("(") and texto.endswith(")")):
        raise DadosInvalidos(f"Lista inválida: {bruto}")
    linha = next(csv.reader([texto[1:-1]], escapechar="\\"), [])
    return [item for item in linha if item != ""]


def aplicar_filtros(consulta, modelo, args):
    for nome, valor in args.items(multi=True):
        if nome in PARAMETROS_RESERVADOS:
            continue
        coluna = _coluna(modelo, nome)
        operador, separador, bruto = valor.partition(".")
        if not separador:
            raise DadosInvalidos(f"Filtro inválido: {nome}={valor}")
        if operador == "in":
            consulta = consulta.filter(coluna.in_([_converter(coluna, i) for i in itens_in(bruto)]))
        elif operador in OPERADORES:
            consulta = consulta.filter(OPERADORES[operador](coluna, _converter(coluna, bruto)))
        else:
            raise DadosInvalidos(f"Operador desconhecido: {operador}")
    return consulta


def aplicar_ordem(consulta, modelo, args, padrao=None):
    ordem = args.get("order")
    if not ordem:
        return consulta.order_by(*padrao) if padrao is not None else consulta
    criterios = []
    for parte in ordem.split(","):
        nome, _, direcao = parte.strip().partition(".")
        coluna = _coluna(modelo, nome)
        if direcao in ("", "asc"):
            criterios.append(coluna.asc())
        elif direcao == "desc":
            criterios.append(coluna.desc())
        else:
            raise DadosInvalidos(f"Direção de ordenação inválida: {direcao}")
    return consulta.order_by(*criterios)


def _inteiro_positivo(args, nome):
    bruto = args.get(nome)
    if bruto is None:
        return None
    try:
        valor = int(bruto)
    except ValueError:
        raise DadosInvalidos(f"{nome} inválido: {bruto}")
    if valor < 0:
        raise DadosInvalidos(f"{nome} inválido: {bruto}")
    return valor


def paginar(consulta, args):
    limite = _inteiro_positivo(args, "limit")
    deslocamento = _inteiro_positivo(args, "offset")
    if deslocamento:
        consulta = consulta.offset(deslocamento)
    if limite is not None:
        consulta = consulta.limit(limite)
    return consulta


# ==========================================================
# LEITURAS ENRIQUECIDAS (JOINS)
# ==========================================================

def consulta_liberacoes():
    return (
        db.session.query(LiberacaoLanche, Aluno, Turma, Cardapio)
        .select_from(LiberacaoLanche)
        .outerjoin(Aluno, Aluno.id == LiberacaoLanche.aluno_id)
        .outerjoin(Turma, Turma.id == Aluno.turma_id)
        .outerjoin(Cardapio, Cardapio.id == LiberacaoLanche.cardapio_id)
    )


def nomes_liberacao(liberacao, turma, cardapio):
    """Nomes ao vivo com recuo para as cópias gravadas na própria liberação."""
    return {
        "turma_nome": (turma.nome if turma else None) or liberacao.turma_nome or "-",
        "cardapio_nome": (cardapio.nome if cardapio else None) or liberacao.cardapio_nome or "-",
        "tipo_refeicao": (cardapio.tipo_refeicao if cardapio else None) or liberacao.tipo_refeicao or "lanche",
    }


def _linha_liberacao(linha):
    liberacao, aluno, turma, cardapio = linha
    dados = serializar_registro(liberacao)
    dados.update(nomes_liberacao(liberacao, turma, cardapio))
    dados["aluno_nome"] = aluno.nome if aluno else None
    dados["aluno_matricula"] = aluno.matricula if aluno else None
    dados["aluno_numero_pasta"] = aluno.numero_pasta if aluno else None
    dados["alunos"] = (
        {"nome": aluno.nome, "matricula": aluno.matricula, "numero_pasta": aluno.numero_pasta}
        if aluno else None
    )
    return dados


def _consulta_movimentacoes():
    return (
        db.session.query(MovimentacaoEstoque, Produto)
        .select_from(MovimentacaoEstoque)
        .outerjoin(Produto, Produto.id == MovimentacaoEstoque.produto_id)
    )


def _linha_movimentacao(linha):
    movimentacao, produto = linha
    dados = serializar_registro(movimentacao)
    dados["produto_nome"] = produto.nome if produto else None
    dados["produto_unidade"] = produto.unidade if produto else None
    dados["produtos"] = {"nome": dados["produto_nome"], "unidade": dados["produto_unidade"]}
    return dados


def _consulta_alunos():
    return (
        db.session.query(Aluno, Turma)
        .select_from(Aluno)
        .outerjoin(Turma, Turma.id == Aluno.turma_id)
    )


def _linha_aluno(linha):
    aluno, turma = linha
    dados = serializar_registro(aluno)
    dados["turma_nome"] = turma.nome if turma else None
    dados["turmas"] = {"nome": turma.nome} if turma else None
    return dados


# tabela -> (consulta, conversor de linha, ordenação padrão)
LEITURAS_ENRIQUECIDAS = {
    "movimentacoes_estoque": (
        _consulta_movimentacoes, _linha_movimentacao, (MovimentacaoEstoque.created_at.desc(),),
    ),
    "liberacoes_lanche": (
        consulta_liberacoes, _linha_liberacao, (LiberacaoLanche.data_liberacao.desc(),),
    ),
    "alunos": (_consulta_alunos, _linha_aluno, (Aluno.nome.asc(),)),
}


# ==========================================================
# ESCRITA
# ==========================================================

def preparar_dados(table, modelo, dados):
    """Valida colunas, gera hash de senha e normaliza datas/tipos do payload."""
    dados = dict(dados)
    if table == "users" and "password" in dados:
        dados["password_hash"] = gerar_hash_senha(dados.pop("password"))

    convertidos = {}
    for nome, valor in dados.items():
        coluna = _coluna(modelo, nome)
        try:
            convertidos[coluna.key] = converter_valor(coluna, valor)
        except (TypeError, ValueError) as e:
            raise DadosInvalidos(str(e))
    return convertidos


def desativar_outros_cardapios(exceto_id=None):
    consulta = update(Cardapio).values(ativo=False)
    if exceto_id is not None:
        consulta = consulta.where(Cardapio.id != exceto_id)
    db.session.execute(consulta)


def _checar_acesso(table, method, payload=None):
    """Retorna a resposta de erro (404/403) ou None quando o acesso é permitido."""
    if table not in TABELAS:
        return erro(f"Tabela {table} não permitida", 404)
    if not tem_permissao(g.usuario.get("role"), method, table, payload):
        return erro("Permissão negada", 403)
    return None


# ==========================================================
# ROTAS
# ==========================================================

@api_bp.route("/<table>", methods=["GET"])
@token_required
def listar(table):
    negado = _checar_acesso(table, "GET")
    if negado:
        return negado
    modelo = TABELAS[table]

    try:
        if table in LEITURAS_ENRIQUECIDAS:
            fabrica, conversor, padrao = LEITURAS_ENRIQUECIDAS[table]
            consulta = fabrica()
        else:
            consulta, conversor, padrao = modelo.query, serializar_registro, None

        consulta = aplicar_filtros(consulta, modelo, request.args)
        total = consulta.order_by(None).count()
        consulta = paginar(aplicar_ordem(consulta, modelo, request.args, padrao), request.args)
        linhas = [conversor(linha) for linha in consulta.all()]
    except DadosInvalidos as e:
        return erro(str(e), 400)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Erro ao listar %s", table)
        return erro("Erro interno", 500)

    resposta = jsonify(linhas)
    resposta.headers["X-Total-Count"] = str(total)
    return resposta


@api_bp.route("/<table>/<registro_id>", methods=["GET"])
@token_required
def obter(table, registro_id):
    negado = _checar_acesso(table, "GET")
    if negado:
        return negado
    try:
        registro = db.session.get(TABELAS[table], registro_id)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Erro ao buscar %s/%s", table, registro_id)
        return erro("Erro interno", 500)
    if not registro:
        return erro("Registro não encontrado", 404)
    return jsonify(serializar_registro(registro))


@api_bp.route("/<table>", methods=["POST"])
@token_required
def criar(table):
    payload = request.get_json(silent=True)
    if payload is None:
        payload = {}
    negado = _checar_acesso(table, "POST", payload)
    if negado:
        return negado
    modelo = TABELAS[table]

    itens = payload if isinstance(payload, list) else [payload]
    if not itens:
        return erro("Payload vazio", 400)

    # Cada item é gravado em sequência; uma falha não desfaz os anteriores
    resultados = []
    try:
        for item in itens:
            if not isinstance(item, dict):
                raise DadosInvalidos("Cada item deve ser um objeto")
            if not item:
                continue
            dados = preparar_dados(table, modelo, item)
            if table == "cardapios" and dados.get("ativo") is True:
                desativar_outros_cardapios()
            registro = modelo(**dados)
            db.session.add(registro)
            db.session.flush()
            resultados.append(serializar_registro(registro))
            db.session.commit()
    except DadosInvalidos as e:
        db.session.rollback()
        return erro(str(e), 400)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Erro ao inserir em %s", table)
        return erro("Erro interno", 500)

    if not resultados:
        return erro("Payload vazio", 400)

    registrar_log(f"Inseriu {len(resultados)} registro(s) em {table}.")
    return jsonify(resultados[0] if len(itens) == 1 else resultados), 201


@api_bp.route("/<table>/<registro_id>", methods=["PUT"])
@token_required
def atualizar(table, registro_id):
    payload = request.get_json(silent=True) or {}
    negado = _checar_acesso(table, "PUT", payload)
    if negado:
        return negado
    if not isinstance(payload, dict) or not payload:
        return erro("Payload vazio", 400)
    modelo = TABELAS[table]

    try:
        registro = db.session.get(modelo, registro_id)
        if not registro:
            return erro("Registro não encontrado", 404)
        dados = preparar_dados(table, modelo, payload)
        if table == "cardapios" and dados.get("ativo") is True:
            desativar_outros_cardapios(exceto_id=registro_id)
        for chave, valor in dados.items():
            setattr(registro, chave, valor)
        db.session.flush()
        resultado = serializar_registro(registro)
        db.session.commit()
    except DadosInvalidos as e:
        db.session.rollback()
        return erro(str(e), 400)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Erro ao atualizar %s/%s", table, registro_id)
        return erro("Erro interno", 500)

    registrar_log(f"Atualizou {table}/{registro_id}.")
    return jsonify(resultado)


@api_bp.route("/<table>/<registro_id>", methods=["DELETE"])
@token_required
def remover(table, registro_id):
    negado = _checar_acesso(table, "DELETE")
    if negado:
        return negado
    modelo = TABELAS[table]

    try:
        registro = db.session.get(modelo, registro_id)
        if not registro:
            return erro("Registro não encontrado", 404)
        if table == "users":
            # Mantém o histórico: liberações e movimentações ficam sem operador
            db.session.execute(
                update(LiberacaoLanche)
                .where(LiberacaoLanche.usuario_id == registro_id)
                .values(usuario_id=None)
            )
            db.session.execute(
                update(MovimentacaoEstoque)
                .where(MovimentacaoEstoque.usuario_id == registro_id)
                .values(usuario_id=None)
            )
            UserRole.query.filter_by(user_id=registro_id).delete()
        db.session.delete(registro)
        db.session.commit()
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Erro ao remover %s/%s", table, registro_id)
        return erro("Erro interno", 500)

    registrar_log(f"Removeu {table}/{registro_id}.")
    return "", 204
