import unittest

from duitr.password_policy import check_password, normalize_email


class PasswordPolicyTests(unittest.TestCase):
    def test_strong_password_passes(self) -> None:
        result = check_password("Str0ng!Pass")

        self.assertTrue(result.is_valid)
        self.assertEqual(result.errors, [])
        self.assertEqual(result.score, 92)
        self.assertEqual(result.strength, "strong")

    def test_common_password_reports_every_failure(self) -> None:
        result = check_password("password")

        self.assertFalse(result.is_valid)
        self.assertEqual(result.strength, "weak")
        self.assertIn("Password is too common. Please choose a stronger password.", result.errors)
        self.assertIn("Password must contain at least one number (0-9).", result.errors)
        self.assertEqual(len(result.errors), 4)

    def test_short_password_scores_without_length_bonus(self) -> None:
        result = check_password("Ab1!")

        self.assertFalse(result.is_valid)
        self.assertEqual(result.score, 70)
        self.assertEqual(result.errors, ["Password must be at least 8 characters long."])

    def test_overlong_password_is_rejected(self) -> None:
        result = check_password("Aa1!" * 40)

        self.assertFalse(result.is_valid)
        self.assertEqual(result.score, 100)
        self.assertIn("Password must not exceed 128 characters.", result.errors)

    def test_email_is_normalized(self) -> None:
        self.assertEqual(normalize_email("  User@Example.COM "), "user@example.com")
        with self.assertRaises(ValueError):
            normalize_email("not-an-email")
        with self.assertRaises(ValueError):
            normalize_email("   ")


if __name__ == "__main__":
    unittest.main()
