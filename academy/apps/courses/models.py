# FILE: /academy/apps/courses/models.py
"""
Course catalogue models consumed by the payments app.
Only the fields checkout and enrollment need are modelled here; lesson
content, reviews and quizzes live elsewhere.
"""
import uuid

from django.conf import settings
from django.db import models
from django.utils.translation import gettext_lazy as _


class Course(models.Model):
    """A purchasable course. Prices are integer minor currency units."""

    class Status(models.TextChoices):
        DRAFT = "DRAFT", _("Draft")
        PUBLISHED = "PUBLISHED", _("Published")
        ARCHIVED = "ARCHIVED", _("Archived")

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    title = models.CharField(_("title"), max_length=255)
    slug = models.SlugField(_("slug"), max_length=255, unique=True)
    description = models.TextField(_("description"), blank=True)
    instructor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="taught_courses"
    )

    price = models.PositiveBigIntegerField(_("price"), help_text=_("Minor currency units"))
    discount_price = models.PositiveBigIntegerField(
        _("discount price"),
        null=True,
        blank=True,
        help_text=_("Optional sale price in minor currency units")
    )
    currency = models.CharField(_("currency"), max_length=3, default="USD")

    status = models.CharField(
        _("status"),
        max_length=20,
        choices=Status.choices,
        default=Status.DRAFT
    )

    created_at = models.DateTimeField(_("created at"), auto_now_add=True)
    updated_at = models.DateTimeField(_("updated at"), auto_now=True)

    class Meta:
        verbose_name = _("course")
        verbose_name_plural = _("courses")
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status", "created_at"], name="course_status_created_idx"),
        ]

    def __str__(self):
        return self.title

    @property
    def is_published(self):
        return self.status == self.Status.PUBLISHED

    @property
    def effective_price(self):
        """The lower of the list price and the sale price."""
        if self.discount_price is not None and self.discount_price < self.price:
            return self.discount_price
        return self.price


class Enrollment(models.Model):
    """Grants a user access to a course. Created when a purchase completes."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="enrollments"
    )
    course = models.ForeignKey(
        Course,
        on_delete=models.CASCADE,
        related_name="enrollments"
    )
    purchase = models.OneToOneField(
        "payments.Purchase",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="enrollment"
    )
    created_at = models.DateTimeField(_("created at"), auto_now_add=True)

    class Meta:
        verbose_name = _("enrollment")
        verbose_name_plural = _("enrollments")
        constraints = [
            models.UniqueConstraint(fields=["user", "course"], name="unique_enrollment_per_user_course"),
        ]

    def __str__(self):
        return f"{self.user} -> {self.course}"


class InstructorEarning(models.Model):
    """
    Instructor share credited for one completed purchase.
    Rows are never edited on refund; reversal accounting is handled by payouts.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    instructor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="earnings"
    )
    purchase = models.OneToOneField(
        "payments.Purchase",
        on_delete=models.PROTECT,
        related_name="instructor_earning"
    )
    amount = models.PositiveBigIntegerField(_("amount"))
    currency = models.CharField(_("currency"), max_length=3)
    created_at = models.DateTimeField(_("created at"), auto_now_add=True)

    class Meta:
        verbose_name = _("instructor earning")
        verbose_name_plural = _("instructor earnings")
        indexes = [
            models.Index(fields=["instructor", "-created_at"], name="earning_instructor_idx"),
        ]

    def __str__(self):
        return f"{self.instructor} +{self.amount} {self.currency}"
