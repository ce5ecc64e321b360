"""
Shared fixtures: an in-memory Supabase, a scripted image generator and the
fully wired services built on top of them.
"""

import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from fake_supabase import PNG_BYTES, FakeSupabase
from sticker_app.config import Settings
from sticker_app.generation import GenerationRequest, build_prompt
from sticker_app.services import build_services


class FakeGenerator:
    """Records generation requests; raises scripted failures in order."""

    def __init__(self):
        self.calls = []
        self.failures = []
        self.fail_always = None
        self.on_generate = None

    def build_request(self, template, subject):
        return GenerationRequest(prompt=build_prompt(template, subject))

    def generate(self, request):
        self.calls.append(request)
        if self.on_generate is not None:
            self.on_generate()
        if self.fail_always is not None:
            raise self.fail_always
        if self.failures:
            raise self.failures.pop(0)
        return PNG_BYTES

    def close(self):
        pass


@pytest.fixture
def fake_supabase():
    return FakeSupabase()


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def settings():
    return Settings(
        supabase_url="https://test.supabase.co",
        supabase_key="test-key",
        openai_api_key="test-openai-key",
        environment="test",
    )


@pytest.fixture
def services(settings, fake_supabase, generator):
    return build_services(settings, fake_supabase, generator=generator)


@pytest.fixture
def style_id(fake_supabase):
    return fake_supabase.add_style({
        "style": "die-cut sticker",
        "object_specification": {"subject": "", "pose": "centered"},
    })


@pytest.fixture
def make_job(services, fake_supabase, style_id):
    """Create a job for the given subjects and return its id."""
    def _make(subjects):
        list_id = fake_supabase.add_subject_list(subjects)
        return services.manager.create_job(style_id, list_id).job_id
    return _make
