# permissoes.py
"""Tabela fixa de permissões por papel, método HTTP e tabela."""

TABELAS_ADMIN_LIVRE = ("cardapios", "produtos", "categorias_produtos", "unidades_medida")
TABELAS_SO_LEITURA_USUARIO = (
    "alunos",
    "turmas",
    "produtos",
    "categorias_produtos",
    "unidades_medida",
    "movimentacoes_estoque",
)


def tem_permissao(role, method, table, payload=None):
    """
    Decide se o papel pode executar o método na tabela.
    O 'super_admin' sempre tem acesso; combinações não previstas são negadas.
    """
    method = (method or "").upper()

    if role == "super_admin":
        return True

    if role == "admin_normal":
        if table in ("users", "user_roles"):
            return False
        if table in ("alunos", "turmas"):
            return method != "DELETE"
        if table in TABELAS_ADMIN_LIVRE:
            return True
        if table == "liberacoes_lanche":
            return method in ("GET", "POST")
        if table == "movimentacoes_estoque":
            return method == "GET"
        # Demais tabelas (ex: itens_cardapio): somente leitura
        return method == "GET"

    if role == "user":
        if table == "liberacoes_lanche":
            return method in ("GET", "POST")
        if table == "cardapios":
            if method == "PUT":
                # Operador só pode ativar/desativar o cardápio
                chaves = set(payload) if isinstance(payload, dict) else set()
                return chaves == {"ativo"}
            return method == "GET"
        if table in TABELAS_SO_LEITURA_USUARIO:
            return method == "GET"
        return False

    return False