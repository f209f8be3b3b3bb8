import unittest

from mercado_obras.procurement import moderation
from mercado_obras.procurement.flow_policy import FLOW_POLICY
from mercado_obras.procurement.fulfillment import ORDER_STATUSES
from mercado_obras.ui_strings import (
    MESSAGES,
    MODERATION_REASON_LABELS,
    STATUS_GROUPS,
    error_message,
    moderation_reason_labels,
    role_label,
    status_keys_for_group,
    status_label,
)


class UiStringsStatusGroupsTest(unittest.TestCase):
    def test_required_status_groups_exist(self) -> None:
        required_groups = {"cotacao", "proposta", "pedido", "fornecedor"}
        self.assertTrue(required_groups.issubset(set(STATUS_GROUPS.keys())))

    def test_every_flow_status_has_a_label(self) -> None:
        for stage, statuses in FLOW_POLICY.items():
            for status in statuses:
                self.assertIn(status, status_keys_for_group(stage), f"{stage}:{status}")
        self.assertEqual(set(status_keys_for_group("pedido")), set(ORDER_STATUSES))

    def test_status_labels_and_descriptions_are_not_empty(self) -> None:
        for group_name, statuses in STATUS_GROUPS.items():
            for status in statuses:
                self.assertTrue((status.get("label") or "").strip(), f"label vazio em {group_name}:{status.get('key')}")
                self.assertTrue(
                    (status.get("description") or "").strip(),
                    f"descricao vazia em {group_name}:{status.get('key')}",
                )

    def test_unknown_status_falls_back(self) -> None:
        self.assertEqual(status_label("pedido", "shipping"), "Em transporte")
        self.assertEqual(status_label("pedido", "teleported"), "teleported")
        self.assertEqual(status_label("pedido", "teleported", "?"), "?")

    def test_moderation_reasons_are_labelled(self) -> None:
        reasons = [
            moderation.REASON_EMAIL,
            moderation.REASON_PHONE,
            moderation.REASON_EXTERNAL_LINK,
            moderation.REASON_SOCIAL_HANDLE,
            moderation.REASON_CONTACT_KEYWORD,
        ]
        self.assertEqual(set(reasons), set(MODERATION_REASON_LABELS))
        self.assertEqual(moderation_reason_labels(["email", "novo"]), ["Endereco de e-mail", "novo"])

    def test_messages_and_roles(self) -> None:
        for category, messages in MESSAGES.items():
            for key, text in messages.items():
                self.assertTrue(text.strip(), f"mensagem vazia: {category}:{key}")
        self.assertEqual(error_message("sem_chave", "padrao"), "padrao")
        self.assertEqual(role_label("SUPPLIER"), "Fornecedor")
        self.assertEqual(role_label(None), "Usuario")


if __name__ == "__main__":
    unittest.main()
