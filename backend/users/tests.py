from django.contrib.auth import get_user_model
from django.db import IntegrityError
from django.test import TestCase


class UserEmailTests(TestCase):
    def test_users_without_email_can_coexist(self):
        user_model = get_user_model()
        first = user_model.objects.create_user(username="sin_correo_1", password="pass1234")
        second = user_model.objects.create_user(username="sin_correo_2", password="pass1234", email="")

        first.refresh_from_db()
        second.refresh_from_db()
        self.assertIsNone(first.email)
        self.assertIsNone(second.email)
        self.assertEqual(first.role, user_model.ROLE_VOTER)

    def test_real_email_stays_unique(self):
        user_model = get_user_model()
        user_model.objects.create_user(username="con_correo_1", password="pass1234", email="ana@example.org")

        with self.assertRaises(IntegrityError):
            user_model.objects.create_user(username="con_correo_2", password="pass1234", email="ana@example.org")
