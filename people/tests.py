import factory
from django.contrib.auth import get_user_model
from django.test import TestCase
from faker import Faker

from .serializers import UserSummarySerializer

User = get_user_model()
fake = Faker()


class UserFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = User

    username = factory.LazyFunction(lambda: fake.unique.user_name())
    email = factory.LazyFunction(lambda: fake.unique.email())
    password = factory.PostGenerationMethodCall("set_password", "testpass123")
    name = factory.LazyFunction(fake.name)
    bio = factory.LazyFunction(lambda: fake.text(max_nb_chars=200))


class UserModelTest(TestCase):
    def test_display_name_prefers_name(self):
        user = UserFactory(name="Ada Lovelace")
        self.assertEqual(user.display_name, "Ada Lovelace")

    def test_display_name_falls_back_to_username(self):
        user = UserFactory(name="")
        self.assertEqual(user.display_name, user.username)


class UserSummarySerializerTest(TestCase):
    def test_fields(self):
        user = UserFactory()
        data = UserSummarySerializer(user).data
        self.assertEqual(set(data), {"id", "username", "name", "bio"})
        self.assertEqual(data["name"], user.name)
        self.assertEqual(data["bio"], user.bio)

    def test_password_never_serialized(self):
        data = UserSummarySerializer(UserFactory()).data
        self.assertNotIn("password", data)
