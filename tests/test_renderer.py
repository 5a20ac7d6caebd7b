"""Tests for placeholder rendering and the cached template service."""
import pytest

from database.store_memory import InMemoryTemplateStore
from templates.renderer import parse_payload, placeholders, render
from templates.registry import TemplateService


class TestRender:
    def test_replaces_known_placeholders(self):
        assert render("Hi {{name}}, code {{code}}", {"name": "Asha", "code": 1234}) == "Hi Asha, code 1234"

    def test_unknown_placeholder_left_verbatim(self):
        assert render("Hi {{name}} {{missing}}", {"name": "Asha"}) == "Hi Asha {{missing}}"

    def test_repeated_placeholder(self):
        assert render("{{x}}-{{x}}", {"x": "a"}) == "a-a"

    def test_values_are_stringified(self):
        assert render("{{flag}} {{items}}", {"flag": True, "items": [1, 2]}) == "True [1, 2]"

    def test_null_renders_as_null(self):
        assert render("Coupon: {{coupon}}", {"coupon": None}) == "Coupon: null"

    def test_keys_with_punctuation(self):
        data = {"order-id": "7", "user.name": "Ana"}
        assert render("Order {{order-id}} for {{user.name}}", data) == "Order 7 for Ana"

    def test_overlapping_keys(self):
        assert render("{{a}} {{a.b}}", {"a": "1", "a.b": "2"}) == "1 2"

    def test_values_are_not_rescanned(self):
        assert render("{{a}} {{b}}", {"a": "{{b}}", "b": "x"}) == "{{b}} x"

    def test_empty_template(self):
        assert render("", {"a": 1}) == ""

    def test_no_data(self):
        assert render("Hello {{name}}", {}) == "Hello {{name}}"

    def test_malformed_tokens_untouched(self):
        text = "{{ name }} {name} {{na-me}}"
        assert render(text, {"name": "x"}) == text

    def test_deterministic(self):
        data = {"a": "1", "b": "2"}
        assert render("{{a}}{{b}}", data) == render("{{a}}{{b}}", data)


class TestPlaceholders:
    def test_order_of_first_appearance(self):
        assert placeholders("{{b}} {{a}} {{b}}") == ["b", "a"]

    def test_punctuated_names(self):
        assert placeholders("{{order-id}} {{user.name}}") == ["order-id", "user.name"]


class TestParsePayload:
    def test_object(self):
        assert parse_payload('{"a": 1}') == {"a": 1}

    @pytest.mark.parametrize("payload", ["", "not json", "[1, 2]", "42", "null"])
    def test_bad_payload_is_empty(self, payload):
        assert parse_payload(payload) == {}


class _FailingTemplateStore(InMemoryTemplateStore):
    async def get_template(self, key):
        raise RuntimeError("database down")


class _CountingTemplateStore(InMemoryTemplateStore):
    def __init__(self, templates=None):
        super().__init__(templates)
        self.lookups = 0

    async def get_template(self, key):
        self.lookups += 1
        return await super().get_template(key)


class TestTemplateService:
    @pytest.mark.asyncio
    async def test_render_job_with_template(self, make_job):
        service = TemplateService(InMemoryTemplateStore({"welcome": "Hello {{name}}!"}))
        assert await service.render_job(make_job()) == "Hello Asha!"

    @pytest.mark.asyncio
    async def test_missing_template_falls_back(self, make_job):
        service = TemplateService(InMemoryTemplateStore())
        job = make_job(template_key="order_shipped")
        assert await service.render_job(job) == "Hi, this is notification for template order_shipped"

    @pytest.mark.asyncio
    async def test_store_failure_falls_back(self, make_job):
        service = TemplateService(_FailingTemplateStore())
        assert await service.render_job(make_job()) == "Hi, this is notification for template welcome"

    @pytest.mark.asyncio
    async def test_bad_payload_renders_with_empty_data(self, make_job):
        service = TemplateService(InMemoryTemplateStore({"welcome": "Hello {{name}}!"}))
        assert await service.render_job(make_job(payload="{broken")) == "Hello {{name}}!"

    @pytest.mark.asyncio
    async def test_lookups_are_cached(self):
        store = _CountingTemplateStore({"k": "v"})
        service = TemplateService(store, ttl_seconds=60)
        assert await service.get_template_content("k") == "v"
        assert await service.get_template_content("k") == "v"
        assert store.lookups == 1

    @pytest.mark.asyncio
    async def test_misses_are_cached(self):
        store = _CountingTemplateStore()
        service = TemplateService(store, ttl_seconds=60)
        assert await service.get_template_content("nope") is None
        assert await service.get_template_content("nope") is None
        assert store.lookups == 1

    @pytest.mark.asyncio
    async def test_zero_ttl_always_reads_store(self):
        store = _CountingTemplateStore({"k": "v"})
        service = TemplateService(store, ttl_seconds=0)
        await service.get_template_content("k")
        await service.get_template_content("k")
        assert store.lookups == 2

    @pytest.mark.asyncio
    async def test_upsert_invalidates_cache(self):
        service = TemplateService(InMemoryTemplateStore({"k": "old"}), ttl_seconds=60)
        assert await service.get_template_content("k") == "old"
        await service.upsert_template("k", "new")
        assert await service.get_template_content("k") == "new"
