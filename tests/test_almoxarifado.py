"""Ajuste de estoque via RPC e relatório CSV."""
from unittest.mock import patch

from extensions import db
from models import MovimentacaoEstoque, Produto

RPC = "/rpc/update_produto_estoque"


def _estoque(app, produto_id):
    with app.app_context():
        return db.session.get(Produto, produto_id).quantidade_estoque


def _movimentacoes(app, produto_id):
    with app.app_context():
        return [
            (m.tipo, m.quantidade, m.usuario_id)
            for m in MovimentacaoEstoque.query.filter_by(produto_id=produto_id).all()
        ]


class TestAjusteEstoque:
    def test_entrada_soma(self, app, client, auth, dados, usuarios):
        r = client.post(RPC, json={"produto_id": dados["arroz"], "tipo": "entrada", "quantidade": 5},
                        headers=auth("admin_normal"))
        assert r.status_code == 200
        assert r.get_json() == {"ok": True, "quantidade_estoque": 15}
        assert _estoque(app, dados["arroz"]) == 15
        assert _movimentacoes(app, dados["arroz"]) == [("entrada", 5, usuarios["admin_normal"])]

    def test_saida_maior_que_saldo_zera(self, app, client, auth, dados):
        r = client.post(RPC, json={"produto_id": dados["arroz"], "tipo": "saida", "quantidade": 100},
                        headers=auth("admin_normal"))
        assert r.status_code == 200
        assert r.get_json()["quantidade_estoque"] == 0
        assert _estoque(app, dados["arroz"]) == 0
        assert _movimentacoes(app, dados["arroz"])[0][:2] == ("saida", 100)

    def test_campos_antigos(self, app, client, auth, dados):
        r = client.post(RPC, json={
            "produto_id": dados["suco"], "tipo_movimentacao": "entrada", "nova_quantidade": "3.5",
        }, headers=auth("super_admin"))
        assert r.status_code == 200
        assert _estoque(app, dados["suco"]) == 5.5

    def test_usuario_informado_no_payload(self, app, client, auth, dados, usuarios):
        client.post(RPC, json={
            "produto_id": dados["suco"], "tipo": "saida", "quantidade": 1, "usuario_id": usuarios["user"],
        }, headers=auth("admin_normal"))
        assert _movimentacoes(app, dados["suco"])[0][2] == usuarios["user"]

    def test_entrada_com_validade(self, app, client, auth, dados):
        r = client.post(RPC, json={
            "produto_id": dados["arroz"], "tipo": "entrada", "quantidade": 1, "data_validade": "31/12/2026",
        }, headers=auth("admin_normal"))
        assert r.status_code == 200
        with app.app_context():
            assert db.session.get(Produto, dados["arroz"]).data_validade.isoformat() == "2026-12-31"

    def test_sequencia_nunca_negativa(self, app, client, auth, dados):
        passos = [("saida", 4), ("entrada", 1), ("saida", 7), ("saida", 2), ("entrada", 0.5)]
        esperado = 10.0
        for tipo, q in passos:
            r = client.post(RPC, json={"produto_id": dados["arroz"], "tipo": tipo, "quantidade": q},
                            headers=auth("admin_normal"))
            assert r.status_code == 200
            esperado = esperado + q if tipo == "entrada" else max(0.0, esperado - q)
            assert r.get_json()["quantidade_estoque"] == esperado
            assert r.get_json()["quantidade_estoque"] >= 0
        assert _estoque(app, dados["arroz"]) == 0.5
        assert len(_movimentacoes(app, dados["arroz"])) == len(passos)


class TestValidacaoRpc:
    def test_campos_ausentes(self, client, auth, dados):
        r = client.post(RPC, json={"produto_id": dados["arroz"], "tipo": "entrada"}, headers=auth("admin_normal"))
        assert r.status_code == 400
        assert r.get_json() == {"error": "Campos obrigatórios ausentes"}

    def test_tipo_invalido(self, client, auth, dados):
        r = client.post(RPC, json={"produto_id": dados["arroz"], "tipo": "ajuste", "quantidade": 1},
                        headers=auth("admin_normal"))
        assert r.status_code == 400
        assert r.get_json() == {"error": "Tipo inválido"}

    def test_quantidade_invalida(self, app, client, auth, dados):
        for q in ("abc", -2, "nan"):
            r = client.post(RPC, json={"produto_id": dados["arroz"], "tipo": "entrada", "quantidade": q},
                            headers=auth("admin_normal"))
            assert r.status_code == 400
        assert _movimentacoes(app, dados["arroz"]) == []

    def test_validade_invalida(self, client, auth, dados):
        r = client.post(RPC, json={
            "produto_id": dados["arroz"], "tipo": "entrada", "quantidade": 1, "data_validade": "logo",
        }, headers=auth("admin_normal"))
        assert r.status_code == 400

    def test_produto_inexistente(self, client, auth, dados):
        r = client.post(RPC, json={"produto_id": "nao-existe", "tipo": "entrada", "quantidade": 1},
                        headers=auth("admin_normal"))
        assert r.status_code == 404

    def test_operador_negado(self, app, client, auth, dados):
        r = client.post(RPC, json={"produto_id": dados["arroz"], "tipo": "entrada", "quantidade": 1},
                        headers=auth("user"))
        assert r.status_code == 403
        assert _estoque(app, dados["arroz"]) == 10

    def test_sem_token(self, client, dados):
        r = client.post(RPC, json={"produto_id": dados["arroz"], "tipo": "entrada", "quantidade": 1})
        assert r.status_code == 401

    def test_falha_no_banco_vira_erro_interno(self, client, auth, dados):
        with patch("almoxarifado_routes.ajustar_estoque", side_effect=RuntimeError("banco fora")):
            r = client.post(RPC, json={"produto_id": dados["arroz"], "tipo": "entrada", "quantidade": 1},
                            headers=auth("admin_normal"))
        assert r.status_code == 500
        assert r.get_json() == {"error": "Erro interno"}


class TestRelatorioEstoque:
    def test_csv(self, client, auth, dados):
        r = client.get("/functions/relatorio_estoque", headers=auth("admin_normal"))
        assert r.status_code == 200
        assert r.mimetype == "text/csv"
        assert "attachment" in r.headers["Content-Disposition"]

        linhas = r.data.decode("utf-8-sig").splitlines()
        assert linhas[0] == "Produto;Categoria;Unidade;Estoque Atual;Estoque Minimo;Validade;Estoque Baixo"
        assert linhas[1] == "Arroz;nao_pereciveis;KG;10,0;5,0;;Não"
        assert linhas[2] == "Suco;bebidas;L;2,0;5,0;;Sim"

    def test_operador_negado(self, client, auth, dados):
        r = client.get("/functions/relatorio_estoque", headers=auth("user"))
        assert r.status_code == 403
