# models.py

import uuid
from datetime import datetime
from extensions import db


def gerar_id():
    return str(uuid.uuid4())


class Log(db.Model):
    __tablename__ = "logs"
    id = db.Column(db.Integer, primary_key=True)
    timestamp = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    username = db.Column(db.String(120), nullable=False)
    action = db.Column(db.String(255), nullable=False)
    ip_address = db.Column(db.String(45))


# ==========================================================
# USUÁRIOS E PAPÉIS
# ==========================================================

class Usuario(db.Model):
    __tablename__ = "users"
    id = db.Column(db.String(36), primary_key=True, default=gerar_id)
    email = db.Column(db.String(120), nullable=False)
    full_name = db.Column(db.String(200), nullable=False)
    role = db.Column(db.String(20), nullable=False, default="user")  # user, admin_normal, super_admin
    password_hash = db.Column(db.String(128))
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint("email", name="uq_users_email"),
        db.CheckConstraint("role IN ('user', 'admin_normal', 'super_admin')", name="ck_users_role"),
    )


class UserRole(db.Model):
    __tablename__ = "user_roles"
    id = db.Column(db.String(36), primary_key=True, default=gerar_id)
    user_id = db.Column(db.String(36), db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    role = db.Column(db.String(20), nullable=False, default="user")
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint("user_id", "role", name="uq_user_roles_user_role"),
    )


# ==========================================================
# ALUNOS E TURMAS
# ==========================================================

class Turma(db.Model):
    __tablename__ = "turmas"
    id = db.Column(db.String(36), primary_key=True, default=gerar_id)
    nome = db.Column(db.String(100), nullable=False)  # Ex: "6º Ano - A"
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    alunos = db.relationship("Aluno", back_populates="turma")


class Aluno(db.Model):
    __tablename__ = "alunos"
    id = db.Column(db.String(36), primary_key=True, default=gerar_id)
    nome = db.Column(db.String(200), nullable=False, index=True)
    matricula = db.Column(db.String(12), nullable=False)  # 12 dígitos
    numero_pasta = db.Column(db.String(4))  # 4 dígitos, lido no crachá
    data_nascimento = db.Column(db.Date)
    e_bolsista = db.Column(db.Boolean, default=False)
    status = db.Column(db.String(20), nullable=False, default="ativo")  # ativo, inativo, suspenso
    email = db.Column(db.String(120))
    telefone = db.Column(db.String(20))
    observacao = db.Column(db.Text)

    turma_id = db.Column(db.String(36), db.ForeignKey("turmas.id"), nullable=True)
    turma = db.relationship("Turma", back_populates="alunos")

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # numero_pasta nulo pode se repetir; o índice único ignora NULL
    __table_args__ = (
        db.UniqueConstraint("matricula", name="uq_alunos_matricula"),
        db.UniqueConstraint("numero_pasta", name="uq_alunos_numero_pasta"),
        db.CheckConstraint("status IN ('ativo', 'inativo', 'suspenso')", name="ck_alunos_status"),
    )


# ==========================================================
# ALMOXARIFADO
# ==========================================================

class CategoriaProduto(db.Model):
    __tablename__ = "categorias_produtos"
    id = db.Column(db.String(36), primary_key=True, default=gerar_id)
    nome = db.Column(db.String(100), nullable=False, unique=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)


class UnidadeMedida(db.Model):
    __tablename__ = "unidades_medida"
    id = db.Column(db.String(36), primary_key=True, default=gerar_id)
    nome = db.Column(db.String(50), nullable=False, unique=True)  # Ex: KG, L, Unid
    created_at = db.Column(db.DateTime, default=datetime.utcnow)


class Produto(db.Model):
    __tablename__ = "produtos"
    id = db.Column(db.String(36), primary_key=True, default=gerar_id)
    nome = db.Column(db.String(150), nullable=False)
    categoria = db.Column(db.String(100), nullable=False)
    unidade = db.Column(db.String(50), nullable=False)
    quantidade_estoque = db.Column(db.Float, nullable=False, default=0.0)
    quantidade_minima = db.Column(db.Float, default=0.0)  # Para alertas
    data_validade = db.Column(db.Date)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    movimentacoes = db.relationship("MovimentacaoEstoque", back_populates="produto")

    __table_args__ = (
        db.CheckConstraint("quantidade_estoque >= 0", name="ck_produtos_estoque_positivo"),
    )


class MovimentacaoEstoque(db.Model):
    __tablename__ = "movimentacoes_estoque"
    id = db.Column(db.String(36), primary_key=True, default=gerar_id)
    produto_id = db.Column(db.String(36), db.ForeignKey("produtos.id"), nullable=False)
    tipo = db.Column(db.String(10), nullable=False)  # 'entrada' ou 'saida'
    quantidade = db.Column(db.Float, nullable=False)
    observacao = db.Column(db.Text)
    usuario_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    produto = db.relationship("Produto", back_populates="movimentacoes")

    __table_args__ = (
        db.CheckConstraint("quantidade > 0", name="ck_movimentacoes_quantidade"),
        db.CheckConstraint("tipo IN ('entrada', 'saida')", name="ck_movimentacoes_tipo"),
    )


# ==========================================================
# CARDÁPIOS E LIBERAÇÕES
# ==========================================================

class Cardapio(db.Model):
    __tablename__ = "cardapios"
    id = db.Column(db.String(36), primary_key=True, default=gerar_id)
    nome = db.Column(db.String(200), nullable=False)
    data_inicio = db.Column(db.Date, nullable=False)
    data_fim = db.Column(db.Date, nullable=False)
    descricao = db.Column(db.Text)
    tipo_refeicao = db.Column(db.String(10), default="lanche")  # lanche, almoco
    ativo = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    itens = db.relationship("ItemCardapio", backref="cardapio", cascade="all, delete-orphan")

    # Só pode existir um cardápio ativo por vez
    __table_args__ = (
        db.Index(
            "one_active_cardapio",
            "ativo",
            unique=True,
            postgresql_where=db.text("ativo = true"),
            sqlite_where=db.text("ativo = 1"),
        ),
        db.CheckConstraint("tipo_refeicao IN ('lanche', 'almoco')", name="ck_cardapios_tipo_refeicao"),
    )


class ItemCardapio(db.Model):
    __tablename__ = "itens_cardapio"
    id = db.Column(db.String(36), primary_key=True, default=gerar_id)
    cardapio_id = db.Column(db.String(36), db.ForeignKey("cardapios.id"), nullable=False)
    nome = db.Column(db.String(200), nullable=False)
    descricao = db.Column(db.Text)
    categoria = db.Column(db.String(100), nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)


class LiberacaoLanche(db.Model):
    __tablename__ = "liberacoes_lanche"
    id = db.Column(db.String(36), primary_key=True, default=gerar_id)
    # aluno_id nulo = código escaneado sem cadastro
    aluno_id = db.Column(db.String(36), db.ForeignKey("alunos.id"), nullable=True)
    cardapio_id = db.Column(db.String(36), db.ForeignKey("cardapios.id", ondelete="SET NULL"), nullable=True)

    # Cópias no momento da liberação, usadas quando o cardápio/turma some
    turma_nome = db.Column(db.String(100))
    cardapio_nome = db.Column(db.String(200))
    tipo_refeicao = db.Column(db.String(10), default="lanche")

    data_liberacao = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)
    usuario_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=True)
    observacao = db.Column(db.Text)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    aluno = db.relationship("Aluno")
    cardapio = db.relationship("Cardapio")


# Tabelas expostas pela API genérica
TABELAS = {
    "alunos": Aluno,
    "turmas": Turma,
    "produtos": Produto,
    "categorias_produtos": CategoriaProduto,
    "unidades_medida": UnidadeMedida,
    "cardapios": Cardapio,
    "itens_cardapio": ItemCardapio,
    "liberacoes_lanche": LiberacaoLanche,
    "movimentacoes_estoque": MovimentacaoEstoque,
    "users": Usuario,
    "user_roles": UserRole,
}
