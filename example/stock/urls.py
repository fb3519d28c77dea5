from django.urls import path, register_converter

from . import views


class SignedIntConverter:
    regex = r"[-+]?\d+"

    def to_python(self, value: str) -> int:
        return int(value)

    def to_url(self, value: int) -> str:
        return str(value)


register_converter(SignedIntConverter, "signed")

urlpatterns = [
    path("adjust/<int:record_id>/<signed:delta>/", views.adjust_record, name="adjust_record"),
    path("burst/<int:record_id>/", views.burst, name="burst"),
]
