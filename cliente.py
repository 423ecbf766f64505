# cliente.py
"""
Cliente Python da cantina com a mesma interface do cliente Supabase:

    cliente = criar_cliente()
    cliente.auth.sign_in_with_password({"email": "...", "password": "..."})
    resp = cliente.from_("alunos").select("*").eq("status", "ativo").order("nome").limit(20).execute()

Em modo local os filtros viram parâmetros da URL e são avaliados pelo servidor.
"""
import os
from datetime import date, datetime

import requests
from supabase import create_client


class ErroCliente(Exception):
    def __init__(self, message, status=None):
        super().__init__(message)
        self.message = message
        self.status = status


class RespostaAPI:
    def __init__(self, data, count=None):
        self.data = data
        self.count = count

    def __repr__(self):
        return f"RespostaAPI(data={self.data!r}, count={self.count!r})"


def formatar_valor(valor):
    if valor is None:
        return "null"
    if isinstance(valor, bool):
        return "true" if valor else "false"
    if isinstance(valor, (date, datetime)):
        return valor.isoformat()
    return str(valor)


CARACTERES_RESERVADOS_IN = set(',()"\\')


def formatar_item_in(valor):
    """Item de in.(...) entre aspas quando contém separadores, como no PostgREST."""
    texto = formatar_valor(valor)
    if CARACTERES_RESERVADOS_IN & set(texto):
        return '"' + texto.replace("\\", "\\\\").replace('"', '\\"') + '"'
    return texto


class QueryBuilder:
    def __init__(self, cliente, table):
        self._cliente = cliente
        self._table = table
        self._filtros = []
        self._ordem = []
        self._limite = None
        self._deslocamento = None
        self._count = None
        self._head = False
        self._operacao = "select"
        self._valores = None
        self._unico = None

    # --- leitura ---

    def select(self, colunas="*", count=None, head=False):
        self._operacao = "select"
        self._count = count
        self._head = head
        return self

    def _filtro(self, operador, coluna, valor):
        self._filtros.append((coluna, operador, valor))
        return self

    def eq(self, coluna, valor):
        return self._filtro("eq", coluna, valor)

    def neq(self, coluna, valor):
        return self._filtro("neq", coluna, valor)

    def gt(self, coluna, valor):
        return self._filtro("gt", coluna, valor)

    def gte(self, coluna, valor):
        return self._filtro("gte", coluna, valor)

    def lt(self, coluna, valor):
        return self._filtro("lt", coluna, valor)

    def lte(self, coluna, valor):
        return self._filtro("lte", coluna, valor)

    def in_(self, coluna, valores):
        return self._filtro("in", coluna, list(valores))

    def order(self, coluna, desc=False):
        self._ordem.append(f"{coluna}.{'desc' if desc else 'asc'}")
        return self

    def limit(self, n):
        self._limite = int(n)
        return self

    def offset(self, n):
        self._deslocamento = int(n)
        return self

    def single(self):
        self._unico = "single"
        return self

    def maybe_single(self):
        self._unico = "maybe"
        return self

    # --- escrita ---

    def insert(self, valores):
        self._operacao = "insert"
        self._valores = valores
        return self

    def update(self, valores):
        self._operacao = "update"
        self._valores = valores
        return self

    def delete(self):
        self._operacao = "delete"
        return self

    # --- execução ---

    def parametros(self):
        params = []
        for coluna, operador, valor in self._filtros:
            if operador == "in":
                texto = ",".join(formatar_item_in(v) for v in valor)
                params.append((coluna, f"in.({texto})"))
            else:
                params.append((coluna, f"{operador}.{formatar_valor(valor)}"))
        if self._ordem:
            params.append(("order", ",".join(self._ordem)))
        if self._limite is not None:
            params.append(("limit", str(self._limite)))
        if self._deslocamento is not None:
            params.append(("offset", str(self._deslocamento)))
        return params

    def _id_filtrado(self, acao):
        for coluna, operador, valor in self._filtros:
            if coluna == "id" and operador == "eq":
                return valor
        raise ErroCliente(f"{acao} local requer eq('id', ...)")

    def execute(self):
        caminho = f"/api/{self._table}"

        if self._operacao == "insert":
            resp = self._cliente.requisicao("POST", caminho, json=self._valores)
            corpo = resp.json()
            return RespostaAPI(corpo if isinstance(corpo, list) else [corpo])

        if self._operacao == "update":
            registro_id = self._id_filtrado("Atualização")
            resp = self._cliente.requisicao("PUT", f"{caminho}/{registro_id}", json=self._valores)
            return RespostaAPI([resp.json()])

        if self._operacao == "delete":
            registro_id = self._id_filtrado("Remoção")
            self._cliente.requisicao("DELETE", f"{caminho}/{registro_id}")
            return RespostaAPI([])

        resp = self._cliente.requisicao("GET", caminho, params=self.parametros())
        linhas = resp.json()
        count = None
        if self._count:
            count = int(resp.headers.get("X-Total-Count", len(linhas)))

        if self._unico == "single":
            if len(linhas) != 1:
                raise ErroCliente(f"Esperado exatamente um registro, encontrados {len(linhas)}", 406)
            return RespostaAPI(linhas[0], count)
        if self._unico == "maybe":
            if len(linhas) > 1:
                raise ErroCliente(f"Esperado no máximo um registro, encontrados {len(linhas)}", 406)
            return RespostaAPI(linhas[0] if linhas else None, count)
        return RespostaAPI(None if self._head else linhas, count)


class ChamadaRPC:
    def __init__(self, cliente, caminho, params):
        self._cliente = cliente
        self._caminho = caminho
        self._params = params or {}

    def execute(self):
        resp = self._cliente.requisicao("POST", self._caminho, json=self._params)
        return RespostaAPI(resp.json())


class AuthLocal:
    def __init__(self, cliente):
        self._cliente = cliente
        self.user = None

    def sign_in_with_password(self, credenciais):
        resp = self._cliente.requisicao("POST", "/auth/login", json={
            "email": credenciais.get("email"),
            "password": credenciais.get("password"),
        })
        corpo = resp.json()
        self._cliente.token = corpo["token"]
        self.user = corpo["user"]
        return corpo

    def get_user(self):
        if not self._cliente.token:
            return None
        try:
            resp = self._cliente.requisicao("GET", "/auth/me")
        except ErroCliente as e:
            if e.status in (401, 404):
                return None
            raise
        self.user = resp.json().get("user")
        return self.user

    def sign_out(self):
        self._cliente.token = None
        self.user = None


class FunctionsLocal:
    def __init__(self, cliente):
        self._cliente = cliente

    def invoke(self, nome, invoke_options=None):
        corpo = (invoke_options or {}).get("body") or {}
        return self._cliente.requisicao("POST", f"/functions/{nome}", json=corpo).json()


class ClienteLocal:
    """Cliente do backend local (Flask), com a interface do cliente Supabase."""

    def __init__(self, base_url=None, token=None, session=None, timeout=None):
        self.base_url = (base_url or os.environ.get("LOCAL_AUTH_URL") or "http://localhost:4000").rstrip("/")
        self.token = token
        self.session = session or requests.Session()
        self.timeout = timeout
        self.auth = AuthLocal(self)
        self.functions = FunctionsLocal(self)

    def from_(self, table):
        return QueryBuilder(self, table)

    table = from_

    def rpc(self, fn, params=None):
        return ChamadaRPC(self, f"/rpc/{fn}", params)

    def requisicao(self, method, caminho, **kwargs):
        headers = kwargs.pop("headers", {})
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        resp = self.session.request(
            method, f"{self.base_url}{caminho}", headers=headers, timeout=self.timeout, **kwargs
        )
        if not resp.ok:
            try:
                corpo = resp.json()
            except ValueError:
                corpo = None
            mensagem = corpo.get("error") if isinstance(corpo, dict) else None
            raise ErroCliente(mensagem or resp.text or "Falha na API local", resp.status_code)
        return resp


def criar_cliente():
    """
    Usa o backend local quando USE_LOCAL_DB=true ou quando faltam as
    credenciais do Supabase; caso contrário conecta na nuvem.
    """
    usar_local = os.environ.get("USE_LOCAL_DB", "").lower() == "true"
    url = os.environ.get("SUPABASE_URL")
    chave = os.environ.get("SUPABASE_ANON_KEY") or os.environ.get("SUPABASE_PUBLISHABLE_KEY")
    if usar_local or not url or not chave:
        return ClienteLocal()
    return create_client(url, chave)
