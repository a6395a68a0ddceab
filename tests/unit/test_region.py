"""Tests for region resolution and the execution context."""

import pytest

from awstools.config import ToolsConfig
from awstools.core.config_loader import ConfigLayer, MergedConfig, Profile
from awstools.core.context import build_execution_context, effective_environment
from awstools.core.region import RegionResolver

from conftest import FakeMetadata


def resolver(config=None, environ=None, metadata=None, **kwargs) -> RegionResolver:
    return RegionResolver(
        config or {},
        environ or {},
        metadata=metadata or FakeMetadata(),
        **kwargs,
    )


class TestRegionResolver:
    """Tests for the ordered region fallback."""

    def test_config_default_region(self, aws_files: dict[str, str]) -> None:
        """Empty override and env vars; config default_region wins."""
        result = resolver({"default_region": "us-east-1"}, aws_files).resolve_with_source(None)
        assert result.region == "us-east-1"
        assert result.source == "config"

    def test_config_region_not_fallback(self, aws_files: dict[str, str]) -> None:
        region = resolver({"default_region": "eu-west-1"}, aws_files).resolve("")
        assert region == "eu-west-1"

    def test_override_beats_everything(self, aws_files: dict[str, str]) -> None:
        env = {**aws_files, "AWS_REGION": "ap-south-1", "AWS_DEFAULT_REGION": "ca-central-1"}
        region = resolver(
            {"REGION": "eu-west-1"}, env, metadata=FakeMetadata(region="sa-east-1")
        ).resolve("us-west-1")
        assert region == "us-west-1"

    def test_generic_env_var_before_default_env_var(self, aws_files: dict[str, str]) -> None:
        env = {**aws_files, "AWS_REGION": "ap-south-1", "AWS_DEFAULT_REGION": "ca-central-1"}
        result = resolver({}, env).resolve_with_source()
        assert (result.region, result.source) == ("ap-south-1", "AWS_REGION")

    def test_default_env_var(self, aws_files: dict[str, str]) -> None:
        env = {**aws_files, "AWS_DEFAULT_REGION": "ca-central-1"}
        assert resolver({}, env).resolve() == "ca-central-1"

    def test_profile_region(self, write_file) -> None:
        env = {
            "AWS_CONFIG_FILE": str(
                write_file("aws/config", "[profile dev]\nregion = eu-north-1\n")
            ),
            "AWS_SHARED_CREDENTIALS_FILE": str(write_file("aws/credentials", "")),
            "AWS_PROFILE": "dev",
        }
        result = resolver({}, env).resolve_with_source()
        assert (result.region, result.source) == ("eu-north-1", "profile")

    def test_explicit_profile_name(self, write_file) -> None:
        env = {
            "AWS_CONFIG_FILE": str(
                write_file("aws/config", "[default]\nregion = us-west-2\n[profile x]\nregion = me-south-1\n")
            ),
            "AWS_SHARED_CREDENTIALS_FILE": str(write_file("aws/credentials", "")),
        }
        assert resolver({}, env).resolve() == "us-west-2"
        assert resolver({}, env, profile_name="x").resolve() == "me-south-1"

    def test_instance_metadata(self, aws_files: dict[str, str]) -> None:
        result = resolver({}, aws_files, metadata=FakeMetadata(region="sa-east-1")).resolve_with_source()
        assert (result.region, result.source) == ("sa-east-1", "instance-metadata")

    def test_fallback(self, aws_files: dict[str, str]) -> None:
        result = resolver({}, aws_files).resolve_with_source()
        assert (result.region, result.source) == ("us-east-1", "fallback")
        assert resolver({}, aws_files, fallback="eu-west-3").resolve() == "eu-west-3"


class TestExecutionContext:
    """Tests for building the immutable execution context."""

    @pytest.fixture
    def merged(self) -> MergedConfig:
        profile = Profile(
            name="dev",
            layers=(
                ConfigLayer("profile-common", values={"REGION": "eu-west-1", "TEAM": "data"}),
                ConfigLayer("profile-service", values={"REGION": "eu-central-1"}),
            ),
        )
        return MergedConfig.from_profile(profile, service="rds")

    def test_explicit_region_beats_profile_layers(
        self, merged: MergedConfig, aws_files: dict[str, str]
    ) -> None:
        context = build_execution_context(
            merged, aws_files, ToolsConfig(), region_override="us-west-2", metadata=FakeMetadata()
        )
        assert context.region == "us-west-2"
        assert context.region_source == "override"

    def test_last_profile_layer_region(self, merged: MergedConfig, aws_files: dict[str, str]) -> None:
        context = build_execution_context(merged, aws_files, ToolsConfig(), metadata=FakeMetadata())
        assert context.region == "eu-central-1"
        assert context.env["AWS_REGION"] == "eu-central-1"
        assert context.env["AWS_DEFAULT_REGION"] == "eu-central-1"

    def test_environment_is_explicit(self, merged: MergedConfig, aws_files: dict[str, str]) -> None:
        ambient = {
            **aws_files,
            "PATH": "/usr/bin",
            "HOME": "/home/u",
            "SECRET_UNRELATED": "x",
            "AWS_ACCESS_KEY_ID": "AKIA",
            "AWS_SECRET_ACCESS_KEY": "s",
        }
        context = build_execution_context(
            merged, ambient, ToolsConfig(), aws_profile="ops", metadata=FakeMetadata()
        )
        assert "SECRET_UNRELATED" not in context.env
        assert context.env["PATH"] == "/usr/bin"
        assert context.env["TEAM"] == "data"
        assert context.env["AWS_PROFILE"] == "ops"
        assert context.env["AWS_PAGER"] == ""
        assert str(context.auth_method) == "env-vars"
        assert context.profile_name == "dev"

    def test_context_is_immutable(self, merged: MergedConfig, aws_files: dict[str, str]) -> None:
        context = build_execution_context(merged, aws_files, ToolsConfig(), metadata=FakeMetadata())
        with pytest.raises(TypeError):
            context.env["AWS_REGION"] = "x"  # type: ignore[index]
        with pytest.raises(AttributeError):
            context.region = "x"  # type: ignore[misc]

    def test_config_overlays_ambient(self, merged: MergedConfig) -> None:
        env = effective_environment({"TEAM": "ops", "AWS_PROFILE": "a"}, merged)
        # TEAM is not passed through from the ambient environment; config supplies it
        assert env["TEAM"] == "data"
        assert env["AWS_PROFILE"] == "a"
