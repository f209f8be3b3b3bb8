import unittest

from mercado_obras.procurement.moderation import (
    REASON_CONTACT_KEYWORD,
    REASON_EMAIL,
    REASON_EXTERNAL_LINK,
    REASON_PHONE,
    REASON_SOCIAL_HANDLE,
    analyze,
)


class ModerationTest(unittest.TestCase):
    def test_negotiation_text_is_allowed(self) -> None:
        for text in (
            "Consigo entregar o cimento na segunda-feira pela manha.",
            "O frete fica em 120,00 para a obra.",
            "Temos 50 sacos em estoque, prazo de 3 dias.",
            "",
            "   ",
        ):
            with self.subTest(text=text):
                result = analyze(text)
                self.assertFalse(result.blocked)
                self.assertEqual(result.reasons, ())

    def test_email_address_is_blocked(self) -> None:
        result = analyze("Manda para joao.silva@deposito.com.br que eu respondo")
        self.assertTrue(result.blocked)
        self.assertIn(REASON_EMAIL, result.reasons)

    def test_phone_numbers_are_blocked(self) -> None:
        for text in ("Liga (11) 98765-4321", "11987654321", "+55 11 3456-7890"):
            with self.subTest(text=text):
                result = analyze(text)
                self.assertTrue(result.blocked)
                self.assertIn(REASON_PHONE, result.reasons)

    def test_external_link_is_blocked(self) -> None:
        result = analyze("Veja o catalogo em www.depositoabc.com.br/ofertas")
        self.assertTrue(result.blocked)
        self.assertIn(REASON_EXTERNAL_LINK, result.reasons)

        result = analyze("https://exemplo.com")
        self.assertIn(REASON_EXTERNAL_LINK, result.reasons)

    def test_social_handle_flags_handle_and_keyword(self) -> None:
        result = analyze("Me segue no Instagram @deposito_abc")
        self.assertTrue(result.blocked)
        self.assertIn(REASON_SOCIAL_HANDLE, result.reasons)
        self.assertIn(REASON_CONTACT_KEYWORD, result.reasons)

    def test_contact_keywords_are_case_insensitive(self) -> None:
        for text in ("Chama no ZAP", "Passa seu WhatsApp", "Podemos fazer pagamento por fora?"):
            with self.subTest(text=text):
                result = analyze(text)
                self.assertTrue(result.blocked)
                self.assertEqual(result.reasons, (REASON_CONTACT_KEYWORD,))

    def test_reasons_are_unique_and_payload_is_serializable(self) -> None:
        result = analyze("email: a@b.com ou c@d.com")
        self.assertEqual(result.reasons.count(REASON_EMAIL), 1)
        self.assertEqual(
            result.to_payload(),
            {"blocked": True, "reasons": [REASON_EMAIL, REASON_CONTACT_KEYWORD]},
        )


if __name__ == "__main__":
    unittest.main()
