# almoxarifado_routes.py
import csv
import io
import math
from datetime import date, datetime

from flask import Blueprint, Response, current_app, g, jsonify, request

from extensions import db
from models import MovimentacaoEstoque, Produto
from utils import erro, normalizar_data, registrar_log, role_required, token_required

almoxarifado_bp = Blueprint("almoxarifado", __name__)

TIPOS_MOVIMENTACAO = ("entrada", "saida")


def ajustar_estoque(produto_id, tipo, quantidade, observacao=None, usuario_id=None, data_validade=None):
    """
    Registra a movimentação e atualiza o estoque do produto numa única transação.
    O estoque nunca fica negativo: uma saída maior que o saldo zera o produto.
    Retorna o produto atualizado ou None se ele não existir.
    """
    try:
        produto = (
            db.session.query(Produto)
            .filter(Produto.id == produto_id)
            .with_for_update()
            .first()
        )
        if not produto:
            db.session.rollback()
            return None

        atual = produto.quantidade_estoque or 0.0
        if tipo == "entrada":
            produto.quantidade_estoque = atual + quantidade
            if data_validade:
                produto.data_validade = data_validade
        else:
            produto.quantidade_estoque = max(0.0, atual - quantidade)
        produto.updated_at = datetime.utcnow()

        db.session.add(MovimentacaoEstoque(
            produto_id=produto.id,
            tipo=tipo,
            quantidade=quantidade,
            observacao=observacao or None,
            usuario_id=usuario_id or None,
        ))
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return produto


@almoxarifado_bp.route("/rpc/update_produto_estoque", methods=["POST"])
@token_required
@role_required("admin_normal")
def update_produto_estoque():
    dados = request.get_json(silent=True) or {}
    produto_id = dados.get("produto_id")
    # Compatibilidade com o payload antigo do frontend
    tipo = dados.get("tipo") or dados.get("tipo_movimentacao")
    quantidade = dados.get("quantidade") or dados.get("nova_quantidade")

    if not produto_id or not tipo or not quantidade:
        return erro("Campos obrigatórios ausentes", 400)
    if tipo not in TIPOS_MOVIMENTACAO:
        return erro("Tipo inválido", 400)
    try:
        quantidade = float(quantidade)
    except (TypeError, ValueError):
        return erro("Quantidade inválida", 400)
    if not math.isfinite(quantidade) or quantidade <= 0:
        return erro("Quantidade inválida", 400)

    data_validade = None
    if dados.get("data_validade"):
        normalizada = normalizar_data(dados["data_validade"])
        if not normalizada:
            return erro("Data de validade inválida", 400)
        data_validade = date.fromisoformat(normalizada)

    try:
        produto = ajustar_estoque(
            produto_id,
            tipo,
            quantidade,
            observacao=dados.get("observacao"),
            usuario_id=dados.get("usuario_id") or g.usuario.get("user_id"),
            data_validade=data_validade,
        )
    except Exception:
        current_app.logger.exception("RPC update_produto_estoque falhou para %s", produto_id)
        return erro("Erro interno", 500)

    if not produto:
        return erro("Produto não encontrado", 404)

    registrar_log(f'{tipo.capitalize()} de {quantidade} em "{produto.nome}".')
    return jsonify({"ok": True, "quantidade_estoque": produto.quantidade_estoque})


@almoxarifado_bp.route("/functions/relatorio_estoque", methods=["GET"])
@token_required
@role_required("admin_normal")
def exportar_relatorio_estoque_csv():
    try:
        produtos = Produto.query.order_by(Produto.nome).all()
    except Exception:
        current_app.logger.exception("Erro ao gerar relatório de estoque")
        return erro("Erro interno", 500)

    output = io.StringIO()
    writer = csv.writer(output, delimiter=";")
    writer.writerow([
        "Produto", "Categoria", "Unidade", "Estoque Atual",
        "Estoque Minimo", "Validade", "Estoque Baixo",
    ])
    for produto in produtos:
        minimo = produto.quantidade_minima or 0
        writer.writerow([
            produto.nome,
            produto.categoria,
            produto.unidade,
            str(produto.quantidade_estoque).replace(".", ","),
            str(minimo).replace(".", ","),
            produto.data_validade.strftime("%d/%m/%Y") if produto.data_validade else "",
            "Sim" if produto.quantidade_estoque <= minimo else "Não",
        ])

    return Response(
        output.getvalue().encode("utf-8-sig"),  # utf-8-sig para o Excel abrir com acentos
        mimetype="text/csv",
        headers={
            "Content-Disposition": f'attachment;filename=relatorio_estoque_{datetime.now().strftime("%Y-%m-%d")}.csv'
        },
    )
