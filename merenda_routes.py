# merenda_routes.py
from collections import Counter
from datetime import datetime, time, timedelta

from flask import Blueprint, current_app, g, jsonify, request
from sqlalchemy import func

from api_routes import consulta_liberacoes, nomes_liberacao
from extensions import db
from models import Aluno, Cardapio, LiberacaoLanche, MovimentacaoEstoque, Produto, Turma
from permissoes import tem_permissao
from utils import erro, registrar_log, serializar_registro, token_required

merenda_bp = Blueprint("merenda", __name__, url_prefix="/functions")

TAMANHO_MATRICULA = 12
TAMANHO_PASTA = 4


# ==========================================================
# BUSCA DE ALUNO PELO CÓDIGO ESCANEADO
# ==========================================================

def codigo_reconhecido(codigo):
    return len(str(codigo)) in (TAMANHO_MATRICULA, TAMANHO_PASTA)


def localizar_aluno(codigo):
    """
    Código de 12 caracteres = matrícula, de 4 = número da pasta.
    Qualquer outro tamanho (inclusive com espaços) não é consultado.
    Retorna (aluno, turma) ou None.
    """
    codigo = str(codigo)
    if not codigo_reconhecido(codigo):
        return None
    if len(codigo) == TAMANHO_MATRICULA:
        criterio = Aluno.matricula == codigo
    else:
        criterio = Aluno.numero_pasta == codigo
    return (
        db.session.query(Aluno, Turma)
        .outerjoin(Turma, Turma.id == Aluno.turma_id)
        .filter(criterio)
        .first()
    )


def resumo_aluno(aluno, turma):
    return {
        "id": str(aluno.id),
        "nome": aluno.nome,
        "matricula": aluno.matricula,
        "numero_pasta": aluno.numero_pasta,
        "turma_nome": turma.nome if turma else "Sem turma",
        "e_bolsista": bool(aluno.e_bolsista),
    }


@merenda_bp.route("/buscar_aluno", methods=["POST"])
@token_required
def buscar_aluno():
    dados = request.get_json(silent=True) or {}
    codigo = dados.get("codigo")
    if codigo is None:
        codigo = dados.get("query")
    if not codigo:
        return erro("Código ausente", 400)

    try:
        encontrado = localizar_aluno(codigo)
    except Exception:
        current_app.logger.exception("Erro ao buscar aluno pelo código")
        return erro("Erro interno", 500)

    if not encontrado:
        return jsonify({"aluno": None})
    return jsonify({"aluno": resumo_aluno(*encontrado)})


# ==========================================================
# HISTÓRICO DE LIBERAÇÕES
# ==========================================================

@merenda_bp.route("/liberacoes_history", methods=["POST"])
@token_required
def liberacoes_history():
    dados = request.get_json(silent=True) or {}
    try:
        limite = int(dados.get("limit", 10))
    except (TypeError, ValueError):
        return erro("Limite inválido", 400)
    limite = min(max(limite, 1), 100)

    try:
        linhas = (
            consulta_liberacoes()
            .order_by(LiberacaoLanche.data_liberacao.desc())
            .limit(limite)
            .all()
        )
    except Exception:
        current_app.logger.exception("Erro ao montar histórico de liberações")
        return erro("Erro interno", 500)

    liberacoes = []
    for liberacao, aluno, turma, cardapio in linhas:
        item = {
            "id": str(liberacao.id),
            "data_liberacao": liberacao.data_liberacao.isoformat(),
            "observacao": liberacao.observacao,
            "aluno": None,
        }
        item.update(nomes_liberacao(liberacao, turma, cardapio))
        if aluno:
            item["aluno"] = {
                "id": str(aluno.id),
                "nome": aluno.nome,
                "matricula": aluno.matricula,
                "numero_pasta": aluno.numero_pasta,
            }
        liberacoes.append(item)
    return jsonify({"liberacoes": liberacoes})


# ==========================================================
# REGISTRO DE LIBERAÇÃO
# ==========================================================

def cardapio_ativo():
    return (
        Cardapio.query.filter_by(ativo=True)
        .order_by(Cardapio.created_at.desc())
        .first()
    )


def liberacao_recente(aluno_id, minutos):
    limite = datetime.utcnow() - timedelta(minutes=minutos)
    return (
        db.session.query(LiberacaoLanche.id)
        .filter(LiberacaoLanche.aluno_id == aluno_id, LiberacaoLanche.data_liberacao >= limite)
        .first()
        is not None
    )


@merenda_bp.route("/liberar_lanche", methods=["POST"])
@token_required
def liberar_lanche():
    """
    Registra a liberação de um lanche a partir do código escaneado.
    Código não cadastrado, liberação recente ou almoço para não bolsista
    voltam como aviso; o operador confirma reenviando com "forcar": true.
    """
    if not tem_permissao(g.usuario.get("role"), "POST", "liberacoes_lanche"):
        return erro("Permissão negada", 403)

    dados = request.get_json(silent=True) or {}
    codigo = dados.get("codigo")
    aluno_id = dados.get("aluno_id")
    forcar = dados.get("forcar") is True
    if not codigo and not aluno_id:
        return erro("Código ausente", 400)
    if not aluno_id and not codigo_reconhecido(codigo):
        return erro("Código inválido", 400)

    try:
        if aluno_id:
            aluno = db.session.get(Aluno, aluno_id)
            if not aluno:
                return erro("Aluno não encontrado", 404)
            encontrado = (aluno, aluno.turma)
        else:
            encontrado = localizar_aluno(codigo)
        aluno, turma = encontrado if encontrado else (None, None)
        if not aluno and not forcar:
            return jsonify({"liberado": False, "aviso": "nao_cadastrado", "codigo": str(codigo)})
        cardapio = cardapio_ativo()

        if not forcar:
            resumo = resumo_aluno(aluno, turma)
            janela = current_app.config["JANELA_LIBERACAO_MINUTOS"]
            if liberacao_recente(aluno.id, janela):
                return jsonify({"liberado": False, "aviso": "liberacao_recente", "aluno": resumo})
            if cardapio and cardapio.tipo_refeicao == "almoco" and not aluno.e_bolsista:
                return jsonify({"liberado": False, "aviso": "nao_bolsista", "aluno": resumo})

        observacao = dados.get("observacao")
        if not aluno:
            observacao = f"Código não cadastrado: {codigo}"

        liberacao = LiberacaoLanche(
            aluno_id=aluno.id if aluno else None,
            usuario_id=g.usuario.get("user_id"),
            turma_nome=turma.nome if turma else None,
            cardapio_id=cardapio.id if cardapio else None,
            cardapio_nome=cardapio.nome if cardapio else None,
            tipo_refeicao=(cardapio.tipo_refeicao if cardapio else None) or "lanche",
            observacao=observacao,
        )
        db.session.add(liberacao)
        db.session.flush()
        resultado = serializar_registro(liberacao)
        db.session.commit()
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Erro ao registrar liberação")
        return erro("Erro interno", 500)

    registrar_log(f"Liberou lanche para {aluno.nome if aluno else 'código ' + str(codigo)}.")
    return jsonify({"liberado": True, "liberacao": resultado}), 201


# ==========================================================
# PAINEL
# ==========================================================

def lanches_por_dia(desde, hoje):
    """Total de liberações por dia; domingo nunca aparece, sábado só se houve lanche."""
    datas = db.session.query(LiberacaoLanche.data_liberacao).filter(
        LiberacaoLanche.data_liberacao >= desde
    )
    contagem = Counter(dt.date() for (dt,) in datas)
    serie = []
    for i in range(6, -1, -1):
        dia = hoje - timedelta(days=i)
        total = contagem.get(dia, 0)
        if dia.weekday() == 6 or (dia.weekday() == 5 and total == 0):
            continue
        serie.append({"dia": dia.isoformat(), "total": total})
    return serie


@merenda_bp.route("/dashboard_stats", methods=["POST"])
@token_required
def dashboard_stats():
    agora = datetime.utcnow()
    hoje = agora.date()
    inicio_hoje = datetime.combine(hoje, time.min)

    try:
        liberacoes_hoje = LiberacaoLanche.query.filter(
            LiberacaoLanche.data_liberacao >= inicio_hoje
        ).count()
        alunos_ativos = Aluno.query.filter_by(status="ativo").count()
        total_produtos = Produto.query.count()
        cardapios_ativos = Cardapio.query.filter_by(ativo=True).count()

        movimentos = dict(
            db.session.query(MovimentacaoEstoque.tipo, func.count(MovimentacaoEstoque.id))
            .filter(MovimentacaoEstoque.created_at >= agora - timedelta(days=7))
            .group_by(MovimentacaoEstoque.tipo)
            .all()
        )

        estoque_baixo = (
            Produto.query.filter(Produto.quantidade_estoque <= func.coalesce(Produto.quantidade_minima, 0))
            .order_by(Produto.quantidade_estoque.asc())
            .all()
        )
        serie = lanches_por_dia(datetime.combine(hoje - timedelta(days=6), time.min), hoje)
    except Exception:
        current_app.logger.exception("Erro ao montar painel")
        return erro("Erro interno", 500)

    return jsonify({
        "liberacoes_hoje": liberacoes_hoje,
        "alunos_cadastrados": alunos_ativos,
        "itens_estoque": total_produtos,
        "cardapios_ativos": cardapios_ativos,
        "movimentacoes": {
            "entradas": movimentos.get("entrada", 0),
            "saidas": movimentos.get("saida", 0),
        },
        "lanches_por_dia": serie,
        "estoque_baixo": [
            {
                "id": p.id,
                "nome": p.nome,
                "quantidade_estoque": p.quantidade_estoque,
                "quantidade_minima": p.quantidade_minima,
            }
            for p in estoque_baixo
        ],
    })
