from __future__ import annotations

from typing import Dict, List


STATUS_GROUPS: Dict[str, List[Dict[str, str]]] = {
    "cotacao": [
        {
            "key": "draft",
            "label": "Rascunho",
            "description": "Cotacao em edicao, ainda nao enviada aos fornecedores.",
        },
        {
            "key": "sent",
            "label": "Aguardando Fornecedores",
            "description": "Cotacao enviada e aguardando a primeira proposta.",
        },
        {
            "key": "answered",
            "label": "Propostas em andamento",
            "description": "Ao menos um fornecedor respondeu a cotacao.",
        },
        {
            "key": "under_review",
            "label": "Em analise",
            "description": "Cliente comparando propostas e selecionando itens.",
        },
        {
            "key": "closed",
            "label": "Finalizada",
            "description": "Pedidos gerados a partir da cotacao.",
        },
        {
            "key": "cancelled",
            "label": "Cancelada",
            "description": "Cotacao cancelada pelo cliente.",
        },
    ],
    "proposta": [
        {"key": "pending", "label": "Pendente", "description": "Proposta aguardando decisao do cliente."},
        {"key": "accepted", "label": "Aceita", "description": "Proposta vencedora em ao menos um item."},
        {"key": "rejected", "label": "Recusada", "description": "Proposta nao selecionada."},
        {"key": "expired", "label": "Expirada", "description": "Validade da proposta encerrada."},
    ],
    "pedido": [
        {"key": "pending", "label": "Aguardando aprovacao", "description": "Pedido gerado, aguardando fornecedor."},
        {"key": "approved", "label": "Aprovado", "description": "Fornecedor aprovou o pedido."},
        {
            "key": "invoice_issuance",
            "label": "Emissao de NF",
            "description": "Fornecedor deve anexar a nota fiscal.",
        },
        {"key": "picking", "label": "Em separacao", "description": "Materiais em separacao no estoque."},
        {"key": "shipping", "label": "Em transporte", "description": "Pedido despachado para a obra."},
        {"key": "delivered", "label": "Entregue", "description": "Entrega confirmada com comprovante."},
        {"key": "cancelled", "label": "Cancelado", "description": "Pedido cancelado antes da aprovacao."},
    ],
    "fornecedor": [
        {"key": "received", "label": "Recebida", "description": "Cotacao disponivel para proposta."},
        {"key": "responded", "label": "Respondida", "description": "Proposta enviada, aguardando decisao."},
        {"key": "won", "label": "Ganha", "description": "Fornecedor venceu a cotacao."},
        {"key": "lost", "label": "Perdida", "description": "Cotacao fechada com outro fornecedor."},
    ],
}


ROLE_LABELS: Dict[str, str] = {
    "client": "Cliente",
    "supplier": "Fornecedor",
    "admin": "Administrador",
}


MODERATION_REASON_LABELS: Dict[str, str] = {
    "email": "Endereco de e-mail",
    "phone": "Numero de telefone",
    "external_link": "Link externo",
    "social_handle": "Perfil de rede social",
    "contact_keyword": "Tentativa de contato fora da plataforma",
}


MESSAGES: Dict[str, Dict[str, str]] = {
    "success": {
        "quotation_created": "Cotacao criada e enviada aos fornecedores.",
        "quotation_draft_saved": "Rascunho de cotacao salvo.",
        "quotation_items_updated": "Itens da cotacao atualizados.",
        "quotation_sent": "Cotacao enviada aos fornecedores.",
        "quotation_cancelled": "Cotacao cancelada.",
        "quotation_under_review": "Cotacao em analise.",
        "proposal_saved": "Proposta registrada com sucesso.",
        "orders_created": "Pedidos gerados com sucesso.",
        "order_updated": "Status do pedido atualizado.",
        "message_sent": "Mensagem enviada.",
    },
    "error": {
        "action_invalid": "Acao invalida para esta operacao.",
        "action_not_allowed_for_status": "Esta acao nao e permitida para o status atual.",
        "attachment_required": "Anexe o arquivo exigido para avancar o pedido.",
        "attachment_too_large": "Arquivo excede o limite de 10MB.",
        "attachment_not_found": "Anexo nao encontrado.",
        "attachment_type_invalid": "Tipo de arquivo nao permitido para esta etapa.",
        "auth_required": "Autenticacao necessaria.",
        "availability_invalid": "Disponibilidade informada e invalida.",
        "chat_access_denied": "Voce nao participa desta conversa.",
        "conflict": "Outra operacao alterou este registro. Recarregue e tente novamente.",
        "content_required": "Digite uma mensagem.",
        "content_too_long": "Mensagem excede o limite de 2000 caracteres.",
        "group_invalid": "Categoria de material invalida.",
        "integration_unavailable": "Servico externo indisponivel no momento.",
        "item_name_required": "Informe o nome do material.",
        "items_required": "Informe ao menos um item.",
        "lead_time_invalid": "Prazo de entrega invalido.",
        "message_blocked": "Mensagem bloqueada: compartilhar contatos fora da plataforma nao e permitido.",
        "not_found": "Registro nao encontrado.",
        "order_action_invalid": "Acao de pedido desconhecida.",
        "order_not_found": "Pedido nao encontrado.",
        "permission_denied": "Voce nao possui permissao para executar esta acao.",
        "price_invalid": "Preco unitario invalido.",
        "proposal_not_found": "Proposta nao encontrada.",
        "quantity_invalid": "Quantidade invalida.",
        "quotation_items_not_found": "Itens informados nao pertencem a cotacao.",
        "quotation_not_finalizable": "Cotacao ja finalizada ou cancelada.",
        "quotation_not_found": "Cotacao nao encontrada.",
        "quotation_not_open": "Cotacao nao aceita novas propostas.",
        "room_key_invalid": "Conversa invalida.",
        "selection_invalid": "Fornecedor selecionado nao ofertou este item.",
        "selections_required": "Selecione ao menos um item para gerar pedidos.",
        "site_not_found": "Obra nao encontrada.",
        "storage_unavailable": "Nao foi possivel salvar o arquivo. Tente novamente.",
        "supplier_not_found": "Fornecedor nao encontrado.",
        "supplier_suspended": "Fornecedor suspenso.",
        "unexpected_error": "Nao foi possivel concluir a operacao. Tente novamente em instantes.",
        "validation_error": "Dados informados sao invalidos.",
    },
}


def status_keys_for_group(group: str) -> List[str]:
    return [item["key"] for item in STATUS_GROUPS.get(group, [])]


def status_label(group: str, key: str | None, default: str | None = None) -> str:
    for item in STATUS_GROUPS.get(group, []):
        if item["key"] == key:
            return item["label"]
    if default is not None:
        return default
    return str(key or "")


def role_label(role: str | None) -> str:
    return ROLE_LABELS.get(str(role or "").strip().lower(), "Usuario")


def moderation_reason_labels(reasons) -> List[str]:
    return [MODERATION_REASON_LABELS.get(reason, reason) for reason in reasons]


def get_message(category: str, key: str, default: str | None = None) -> str:
    message = MESSAGES.get(category, {}).get(key)
    if message:
        return message
    if default is not None:
        return default
    return key


def error_message(key: str, default: str | None = None) -> str:
    return get_message("error", key, default)


def success_message(key: str, default: str | None = None) -> str:
    return get_message("success", key, default)
