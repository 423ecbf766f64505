"""Cliente com interface Supabase falando com o backend local."""
import json
from datetime import date
from unittest.mock import patch, sentinel
from urllib.parse import urlencode, urlsplit

import pytest

import cliente as modulo_cliente
from cliente import ClienteLocal, ErroCliente, criar_cliente, formatar_valor


class RespostaFlask:
    """Resposta do test client com a interface mínima de requests.Response."""

    def __init__(self, resposta):
        self.status_code = resposta.status_code
        self.headers = resposta.headers
        self.text = resposta.get_data(as_text=True)
        self.ok = self.status_code < 400

    def json(self):
        return json.loads(self.text)


class SessaoFlask:
    """Substitui requests.Session encaminhando as chamadas ao test client."""

    def __init__(self, client):
        self.client = client
        self.chamadas = []

    def request(self, method, url, headers=None, timeout=None, params=None, json=None):
        caminho = urlsplit(url).path
        if params:
            caminho = f"{caminho}?{urlencode(params)}"
        self.chamadas.append((method, caminho))
        return RespostaFlask(self.client.open(caminho, method=method, headers=headers or {}, json=json))


@pytest.fixture
def sessao(client):
    return SessaoFlask(client)


@pytest.fixture
def cliente(sessao, usuarios, dados):
    c = ClienteLocal(base_url="http://cantina.test", session=sessao)
    c.auth.sign_in_with_password({"email": "admin_normal@cantina.com", "password": "123456"})
    return c


class TestParametros:
    def test_filtros_viram_query_string(self):
        q = (
            ClienteLocal(session=object())
            .from_("liberacoes_lanche")
            .select("*")
            .eq("aluno_id", "a1")
            .gte("data_liberacao", date(2025, 3, 1))
            .in_("tipo_refeicao", ["lanche", "almoco"])
            .eq("observacao", None)
            .order("data_liberacao", desc=True)
            .limit(5)
            .offset(10)
        )
        assert q.parametros() == [
            ("aluno_id", "eq.a1"),
            ("data_liberacao", "gte.2025-03-01"),
            ("tipo_refeicao", "in.(lanche,almoco)"),
            ("observacao", "eq.null"),
            ("order", "data_liberacao.desc"),
            ("limit", "5"),
            ("offset", "10"),
        ]

    def test_in_com_separadores_vai_entre_aspas(self):
        q = ClienteLocal(session=object()).from_("turmas").select("*").in_(
            "nome", ["7º Ano, B", "Sala (tarde)", 'Diz "oi"', "a\\b", "simples"]
        )
        assert q.parametros() == [
            ("nome", 'in.("7º Ano, B","Sala (tarde)","Diz \\"oi\\"","a\\\\b",simples)'),
        ]

    def test_formatar_valor(self):
        assert formatar_valor(True) == "true"
        assert formatar_valor(False) == "false"
        assert formatar_valor(2.5) == "2.5"

    def test_update_exige_id(self):
        q = ClienteLocal(session=object()).from_("produtos").update({"nome": "X"}).eq("nome", "Arroz")
        with pytest.raises(ErroCliente, match="eq\\('id'"):
            q.execute()

    def test_delete_exige_id(self):
        with pytest.raises(ErroCliente):
            ClienteLocal(session=object()).table("produtos").delete().execute()


class TestAuth:
    def test_login_e_usuario_atual(self, cliente):
        assert cliente.token
        assert cliente.auth.user["role"] == "admin_normal"
        assert cliente.auth.get_user()["email"] == "admin_normal@cantina.com"

    def test_sign_out(self, cliente, sessao):
        cliente.auth.sign_out()
        total = len(sessao.chamadas)
        assert cliente.auth.get_user() is None
        assert len(sessao.chamadas) == total

    def test_token_invalido(self, cliente):
        cliente.token = "lixo"
        assert cliente.auth.get_user() is None

    def test_credenciais_invalidas(self, sessao, usuarios):
        c = ClienteLocal(base_url="http://cantina.test", session=sessao)
        with pytest.raises(ErroCliente) as exc:
            c.auth.sign_in_with_password({"email": "user@cantina.com", "password": "errada"})
        assert exc.value.status == 401
        assert exc.value.message == "Credenciais inválidas"


class TestConsultas:
    def test_select_com_filtro_e_contagem(self, cliente):
        resp = cliente.from_("alunos").select("*", count="exact").eq("e_bolsista", True).execute()
        assert [a["nome"] for a in resp.data] == ["Ana Souza"]
        assert resp.count == 1

    def test_ordem_limite_e_contagem_total(self, cliente):
        resp = cliente.table("alunos").select("*", count="exact").order("nome", desc=True).limit(1).execute()
        assert [a["nome"] for a in resp.data] == ["Bruno Lima"]
        assert resp.count == 2

    def test_in_com_virgula_e_parenteses(self, cliente):
        nomes = ["7º Ano, B", "Sala (tarde)", 'Turma "C"']
        cliente.from_("turmas").insert([{"nome": n} for n in nomes + ["7º Ano"]]).execute()
        resp = cliente.from_("turmas").select("*", count="exact").in_("nome", nomes).execute()
        assert sorted(t["nome"] for t in resp.data) == sorted(nomes)
        assert resp.count == 3

    def test_head(self, cliente):
        resp = cliente.from_("produtos").select("*", count="exact", head=True).execute()
        assert resp.data is None
        assert resp.count == 2

    def test_single(self, cliente):
        resp = cliente.from_("alunos").select("*").eq("matricula", "202400000001").single().execute()
        assert resp.data["nome"] == "Ana Souza"

        with pytest.raises(ErroCliente) as exc:
            cliente.from_("alunos").select("*").single().execute()
        assert exc.value.status == 406

    def test_maybe_single(self, cliente):
        resp = cliente.from_("alunos").select("*").eq("matricula", "000000000000").maybe_single().execute()
        assert resp.data is None

    def test_permissao_negada(self, cliente):
        with pytest.raises(ErroCliente) as exc:
            cliente.from_("users").select("*").execute()
        assert exc.value.status == 403
        assert exc.value.message == "Permissão negada"


class TestEscrita:
    def test_insert_update_delete(self, cliente, dados):
        criado = cliente.from_("turmas").insert({"nome": "7º Ano - B"}).execute().data
        assert criado[0]["nome"] == "7º Ano - B"

        lote = cliente.from_("turmas").insert([{"nome": "8º Ano"}, {"nome": "9º Ano"}]).execute().data
        assert len(lote) == 2

        atualizado = cliente.from_("produtos").update({"quantidade_minima": 1}).eq("id", dados["arroz"]).execute()
        assert atualizado.data[0]["quantidade_minima"] == 1

        removido = cliente.from_("produtos").delete().eq("id", dados["suco"]).execute()
        assert removido.data == []
        assert cliente.from_("produtos").select("*", count="exact", head=True).execute().count == 1


class TestRpcEFuncoes:
    def test_rpc_estoque(self, cliente, dados):
        resp = cliente.rpc("update_produto_estoque", {
            "produto_id": dados["arroz"], "tipo": "entrada", "quantidade": 5,
        }).execute()
        assert resp.data == {"ok": True, "quantidade_estoque": 15}

    def test_functions_invoke(self, cliente, sessao):
        corpo = cliente.functions.invoke("buscar_aluno", {"body": {"codigo": "0001"}})
        assert corpo["aluno"]["nome"] == "Ana Souza"
        assert sessao.chamadas[-1] == ("POST", "/functions/buscar_aluno")


class TestCriarCliente:
    @pytest.fixture(autouse=True)
    def limpar_env(self, monkeypatch):
        for nome in ("USE_LOCAL_DB", "SUPABASE_URL", "SUPABASE_ANON_KEY", "SUPABASE_PUBLISHABLE_KEY"):
            monkeypatch.delenv(nome, raising=False)

    def test_sem_credenciais_usa_local(self):
        assert isinstance(criar_cliente(), ClienteLocal)

    def test_flag_local(self, monkeypatch):
        monkeypatch.setenv("USE_LOCAL_DB", "true")
        monkeypatch.setenv("SUPABASE_URL", "https://exemplo.supabase.co")
        monkeypatch.setenv("SUPABASE_ANON_KEY", "chave")
        assert isinstance(criar_cliente(), ClienteLocal)

    def test_supabase(self, monkeypatch):
        monkeypatch.setenv("SUPABASE_URL", "https://exemplo.supabase.co")
        monkeypatch.setenv("SUPABASE_PUBLISHABLE_KEY", "chave")
        with patch.object(modulo_cliente, "create_client", return_value=sentinel.supabase) as create:
            assert criar_cliente() is sentinel.supabase
        create.assert_called_once_with("https://exemplo.supabase.co", "chave")

    def test_url_local_por_variavel(self, monkeypatch):
        monkeypatch.setenv("LOCAL_AUTH_URL", "http://10.0.0.5:4000/")
        assert criar_cliente().base_url == "http://10.0.0.5:4000"
