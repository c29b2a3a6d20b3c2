"""
Tests for notification rendering and the course catalog.
"""

import json

import pytest

from portal.models.submissions import BienestarForm, FormacionForm, PqrsForm
from portal.services.notifications import (
    CourseDefinition,
    find_course,
    load_course_catalog,
    render_bienestar_notification,
    render_formacion_confirmation,
    render_formacion_notification,
    render_pqrs_notification,
)


@pytest.fixture
def pqrs_form():
    return PqrsForm(
        fullName="Ana <script>alert(1)</script>",
        email="ana@example.com",
        phone="3001234567",
        documentType="CC",
        documentNumber="1020304050",
        requestType="Queja",
        subject="Demora en respuesta",
        description="Primera línea\nSegunda línea",
    )


@pytest.fixture
def formacion_form():
    return FormacionForm(fullName="Ana", email="ana@example.com", course="Marketing Digital")


class TestPqrsNotification:
    def test_html_is_escaped_and_keeps_line_breaks(self, pqrs_form):
        rendered = render_pqrs_notification(pqrs_form)
        assert "&lt;script&gt;" in rendered.html
        assert "<script>" not in rendered.html
        assert "Primera línea<br />Segunda línea" in rendered.html
        assert "Advertencia legal" in rendered.html

    def test_text_is_not_escaped(self, pqrs_form):
        rendered = render_pqrs_notification(pqrs_form)
        assert "Nombre: Ana <script>alert(1)</script>" in rendered.text
        assert "Tipo: Queja" in rendered.text
        assert "Primera línea\nSegunda línea" in rendered.text


class TestFormacionNotifications:
    def test_staff_notification_omits_missing_identification(self, formacion_form):
        rendered = render_formacion_notification(formacion_form)
        assert "Marketing Digital" in rendered.text
        assert "Cédula" not in rendered.text

    def test_staff_notification_includes_identification(self):
        form = FormacionForm(fullName="Ana", email="ana@example.com", course="Excel", identification="123")
        assert "123" in render_formacion_notification(form).text

    def test_confirmation_for_certified_course(self, formacion_form):
        course = CourseDefinition(title="Finanzas Personales", isCertificate=True)
        rendered = render_formacion_confirmation(formacion_form, course)
        assert "espere indicaciones de acceso" in rendered.text
        assert "espere indicaciones de acceso" in rendered.html

    def test_confirmation_for_uncertified_course_with_link(self, formacion_form):
        course = CourseDefinition(
            title="Marketing Digital",
            isCertificate=False,
            urlCurso="https://formacion.example.com/cursos/marketing-digital",
        )
        rendered = render_formacion_confirmation(formacion_form, course)
        assert "no genera certificado" in rendered.text
        assert "https://formacion.example.com/cursos/marketing-digital" in rendered.text
        assert 'href="https://formacion.example.com/cursos/marketing-digital"' in rendered.html

    def test_confirmation_for_uncertified_course_without_link(self, formacion_form):
        course = CourseDefinition(title="Servicio al Cliente", isCertificate=False)
        rendered = render_formacion_confirmation(formacion_form, course)
        assert "Este curso no genera certificado." in rendered.text
        assert "https://" not in rendered.text

    def test_legal_notice_only_on_staff_notification(self, formacion_form):
        staff = render_formacion_notification(formacion_form)
        confirmation = render_formacion_confirmation(formacion_form)

        assert "Advertencia legal" in staff.html
        assert "Advertencia legal" not in confirmation.html
        assert "Advertencia legal" not in confirmation.text
        assert "Marketing Digital" in confirmation.html

    @pytest.mark.parametrize("course", [None, CourseDefinition(title="Emprendimiento")])
    def test_confirmation_without_certificate_information(self, formacion_form, course):
        rendered = render_formacion_confirmation(formacion_form, course)
        assert "certificado" not in rendered.text
        assert "indicaciones de acceso" not in rendered.text
        assert "Hola Ana" in rendered.text


class TestBienestarNotification:
    def test_renders_request(self):
        form = BienestarForm(
            fullName="Luis",
            identification="987",
            email="luis@example.com",
            phone="3000000000",
            service="Psicología",
            serviceCatalog="sia-01",
            preferredDate="2026-11-02",
            preferredTime="10:00",
        )
        rendered = render_bienestar_notification(form)
        assert "Psicología" in rendered.text
        assert "SIA-01" in rendered.text
        assert "2026-11-02" in rendered.html


class TestCourseCatalog:
    def test_bundled_catalog(self):
        titles = [course.title for course in load_course_catalog()]
        assert "Marketing Digital" in titles

    def test_find_course_is_case_insensitive(self):
        course = find_course("  marketing digital ")
        assert course is not None
        assert course.isCertificate is False
        assert course.urlCurso

    def test_unknown_course(self):
        assert find_course("Curso inexistente") is None

    def test_entries_without_flags(self, tmp_path):
        path = tmp_path / "courses.json"
        path.write_text(json.dumps([{"title": "Solo título", "urlCurso": "  "}]), encoding="utf-8")
        [course] = load_course_catalog(path)
        assert course == CourseDefinition(title="Solo título", isCertificate=None, urlCurso=None)
