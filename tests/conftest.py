"""Shared fixtures for the sync tests."""

from __future__ import annotations

import pytest

from tether.sync.github import GitHubClient, RemoteSettings

from fakes import FakeGitHub


@pytest.fixture
def fake_github() -> FakeGitHub:
    return FakeGitHub()


@pytest.fixture
def remote_settings() -> RemoteSettings:
    return RemoteSettings(owner="acme", repo="docs", branch="main", token="t0ken", timeout=5.0)


@pytest.fixture
def github_client(remote_settings: RemoteSettings, fake_github: FakeGitHub) -> GitHubClient:
    return GitHubClient(remote_settings, transport=fake_github.transport)
