# FILE: tests/factories.py
from datetime import timedelta
from decimal import Decimal

import factory
from django.contrib.auth import get_user_model
from django.utils import timezone

from academy.apps.courses.models import Course
from academy.apps.payments.models import Coupon, Provider, Purchase

User = get_user_model()


class UserFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = User

    email = factory.Sequence(lambda n: f"user{n}@example.com")
    first_name = factory.Faker('first_name')
    last_name = factory.Faker('last_name')
    is_active = True
    role = User.Role.STUDENT


class InstructorFactory(UserFactory):
    role = User.Role.INSTRUCTOR


class AdminFactory(UserFactory):
    role = User.Role.ADMIN
    is_staff = True


class CourseFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Course

    title = factory.Sequence(lambda n: f"Course {n}")
    slug = factory.Sequence(lambda n: f"course-{n}")
    instructor = factory.SubFactory(InstructorFactory)
    price = 20000
    currency = 'USD'
    status = Course.Status.PUBLISHED


class CouponFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Coupon

    code = factory.Sequence(lambda n: f"SAVE{n:04d}")
    discount_type = Coupon.DiscountType.PERCENTAGE
    discount_value = Decimal('10.00')
    start_date = factory.LazyFunction(lambda: timezone.now() - timedelta(days=1))
    is_active = True


class PurchaseFactory(factory.django.DjangoModelFactory):
    """A PENDING purchase priced like a 20% platform fee with no coupon."""

    class Meta:
        model = Purchase

    user = factory.SubFactory(UserFactory)
    course = factory.SubFactory(CourseFactory)
    provider = Provider.CARD
    provider_session_ref = factory.Sequence(lambda n: f"cs_test_{n}")
    amount = factory.LazyAttribute(lambda o: o.course.price)
    currency = factory.LazyAttribute(lambda o: o.course.currency)
    discount_amount = 0
    charge_amount = factory.LazyAttribute(lambda o: o.amount - o.discount_amount)
    platform_share = factory.LazyAttribute(lambda o: o.charge_amount * 20 // 100)
    instructor_share = factory.LazyAttribute(lambda o: o.charge_amount - o.platform_share)
    platform_fee_percent = Decimal('20.00')
    status = Purchase.Status.PENDING
