"""LLM provider configuration commands for RepoLens."""

from __future__ import annotations

from typing import Optional

import typer

from . import config_manager

config_app = typer.Typer(help="Configure the completion provider.", no_args_is_help=True)


def print_success(message: str):
    typer.echo(typer.style("✓ ", fg=typer.colors.GREEN, bold=True) + message)


def print_error(message: str):
    typer.echo(typer.style("✗ ", fg=typer.colors.RED, bold=True) + message, err=True)


def print_info(message: str):
    typer.echo(typer.style("ℹ ", fg=typer.colors.BLUE) + message)


def mask_key(api_key: str) -> str:
    if len(api_key) <= 8:
        return "•" * len(api_key)
    return api_key[:8] + "•" * min(len(api_key) - 8, 16)


@config_app.command("set-llm")
def set_llm(
    provider: str = typer.Argument(..., help="LLM provider: ollama, groq, openai, anthropic, gemini, openrouter"),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Model name (uses provider default if not set)."),
    api_key: Optional[str] = typer.Option(None, "--api-key", "-k", help="API key for cloud providers."),
    endpoint: Optional[str] = typer.Option(None, "--endpoint", "-e", help="Custom endpoint URL."),
):
    """Switch the completion provider.

    Examples:
        repolens config set-llm groq -k YOUR_API_KEY
        repolens config set-llm ollama -m qwen2.5-coder:7b
    """
    provider = provider.lower().strip()

    if provider not in config_manager.ALL_PROVIDERS:
        print_error(f"Unknown provider '{provider}'. Choose from: {', '.join(config_manager.ALL_PROVIDERS)}")
        raise typer.Exit(code=1)

    # Raw file contents, so a key coming from the environment is never written back.
    current = config_manager.load_full_config().get("llm") or {}
    defaults = config_manager.get_provider_config(provider)

    resolved_model = model or defaults.get("model", "")
    resolved_endpoint = endpoint or defaults.get("endpoint", "")
    resolved_api_key = api_key or ""

    # Cloud providers need an API key
    if provider != "ollama" and not resolved_api_key:
        if current.get("provider") == provider and current.get("api_key"):
            resolved_api_key = current["api_key"]
            print_info(f"Reusing existing API key for {provider}")
        elif config_manager.env_api_key(provider):
            env_name = config_manager.API_KEY_ENV.get(provider, "REPOLENS_API_KEY")
            print_info(f"Using the API key from the environment (REPOLENS_API_KEY or {env_name})")
        else:
            resolved_api_key = typer.prompt(f"Enter your {provider} API key", hide_input=True)

    if config_manager.save_config(provider, resolved_model, resolved_api_key, resolved_endpoint):
        print_success(f"LLM provider set to: {provider}")
        typer.echo(f"  Provider: {typer.style(provider, fg=typer.colors.CYAN)}")
        typer.echo(f"  Model:    {typer.style(resolved_model, fg=typer.colors.CYAN)}")
        if resolved_endpoint:
            typer.echo(f"  Endpoint: {resolved_endpoint}")
    else:
        print_error("Failed to save configuration!")
        raise typer.Exit(code=1)


@config_app.command("unset-llm")
def unset_llm(
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
):
    """Remove the stored provider settings (API keys included)."""
    if not config_manager.CONFIG_FILE.exists():
        print_info("No LLM configuration found. Nothing to unset.")
        raise typer.Exit(code=0)

    if not yes and not typer.confirm("Remove the stored LLM configuration?", default=False):
        print_info("Cancelled.")
        raise typer.Exit(code=0)

    if config_manager.clear_config():
        print_success("LLM configuration removed; Ollama defaults apply.")
    else:
        print_error("Failed to update configuration!")
        raise typer.Exit(code=1)


@config_app.command("show-llm")
def show_llm():
    """Show current LLM provider configuration."""
    cfg = config_manager.load_config()

    provider = cfg.get("provider", "ollama")
    model = cfg.get("model", "")
    endpoint = cfg.get("endpoint", "")
    api_key = cfg.get("api_key", "")

    typer.echo(f"  Provider  {typer.style(provider.upper(), bold=True)}")
    typer.echo(f"  Model     {typer.style(model, bold=True)}")
    if endpoint:
        typer.echo(f"  Endpoint  {typer.style(endpoint, dim=True)}")
    if api_key:
        typer.echo(f"  API Key   {mask_key(api_key)}")
    else:
        typer.echo(f"  API Key   {typer.style('(not set)', dim=True)}")
    typer.echo(f"  Config    {typer.style(str(config_manager.CONFIG_FILE), dim=True)}")
