"""Command-line front end for the todo sync client."""

import asyncio
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, List, Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .client import TodoSyncClient
from .config import load_config
from .errors import TodoSyncError
from .models import Priority, Todo, TodoStatus, User
from .query_keys import FilterState

console = Console()

DATE_FORMATS = ["%Y-%m-%d", "%Y-%m-%d %H:%M", "%Y-%m-%dT%H:%M:%S"]

PRIORITY_STYLES = {
    Priority.HIGH: "red",
    Priority.MEDIUM: "yellow",
    Priority.LOW: "green",
}

STATUS_ICONS = {
    TodoStatus.PENDING: "⏳",
    TodoStatus.IN_PROGRESS: "🔄",
    TodoStatus.COMPLETED: "✅",
}


def setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=verbose)],
    )


def run_with_client(ctx: click.Context, func: Callable[[TodoSyncClient], Awaitable[Any]]) -> Any:
    """Run ``func`` against a fresh client and report sync errors."""
    factory = ctx.obj.get("client_factory") or TodoSyncClient

    async def runner():
        client = factory(ctx.obj["config"])
        try:
            return await func(client)
        finally:
            await client.close()

    try:
        return asyncio.run(runner())
    except TodoSyncError as e:
        console.print(f"[red]Error: {e.message}[/red]")
        if e.description:
            console.print(f"[dim]{e.description}[/dim]")
        ctx.exit(1)


def render_todos(todos: List[Todo], title: str = "Todos") -> Table:
    table = Table(title=title, show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim", justify="right")
    table.add_column("", width=2)
    table.add_column("Title", style="cyan")
    table.add_column("Priority")
    table.add_column("Due")
    table.add_column("★", width=1)
    table.add_column("Assigned", style="dim")

    for todo in todos:
        style = PRIORITY_STYLES.get(todo.priority, "white")
        table.add_row(
            str(todo.id),
            STATUS_ICONS.get(todo.status, ""),
            todo.title,
            f"[{style}]{todo.priority.value}[/{style}]",
            todo.due_date.strftime("%Y-%m-%d"),
            "★" if todo.starred else "",
            ", ".join(str(user_id) for user_id in todo.assigned_user_ids),
        )
    return table


def render_users(users: List[User]) -> Table:
    table = Table(title="Users", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim", justify="right")
    table.add_column("Username", style="cyan")
    table.add_column("Email")
    for user in users:
        table.add_row(str(user.id), user.username, user.email)
    return table


@click.group()
@click.option("--config", "config_path", type=click.Path(dir_okay=False, path_type=Path),
              help="Path to config.yaml")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx, config_path: Optional[Path], verbose: bool):
    """Todo sync client."""
    setup_logging(verbose)
    ctx.ensure_object(dict)
    if "config" not in ctx.obj:
        try:
            ctx.obj["config"] = load_config(config_path)
        except TodoSyncError as e:
            console.print(f"[red]Error: {e.message}[/red]")
            ctx.exit(1)


# Authentication

@cli.command()
@click.option("--email", prompt=True)
@click.option("--password", prompt=True, hide_input=True)
@click.pass_context
def login(ctx, email: str, password: str):
    """Log in and remember the session."""
    session = run_with_client(ctx, lambda client: client.login(email, password))
    console.print(f"[green]✅ Logged in as {session.display_name}[/green]")


@cli.command()
@click.option("--username", prompt=True)
@click.option("--email", prompt=True)
@click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True)
@click.pass_context
def register(ctx, username: str, email: str, password: str):
    """Create an account and log in."""
    session = run_with_client(ctx, lambda client: client.register(username, email, password))
    console.print(f"[green]✅ Registered and logged in as {session.display_name}[/green]")


@cli.command()
@click.pass_context
def logout(ctx):
    """End the current session."""
    run_with_client(ctx, lambda client: client.logout())
    console.print("Logged out")


@cli.command()
@click.pass_context
def whoami(ctx):
    """Show the logged in user."""

    async def show(client: TodoSyncClient):
        return client.current_session

    session = run_with_client(ctx, show)
    if session is None:
        console.print("[yellow]Not logged in[/yellow]")
        return
    console.print(f"[bold cyan]{session.display_name}[/bold cyan] <{session.email}>")


# Reading

@cli.command("list")
@click.option("--status", "-s", multiple=True,
              type=click.Choice([s.value for s in TodoStatus], case_sensitive=False))
@click.option("--priority", "-p", multiple=True,
              type=click.Choice([p.value for p in Priority], case_sensitive=False))
@click.option("--assigned-to", "-a", multiple=True, type=int, help="User id")
@click.option("--starred", is_flag=True, help="Only starred todos")
@click.option("--search", default="", help="Match title or description")
@click.pass_context
def list_todos(ctx, status, priority, assigned_to, starred, search):
    """List todos."""
    filters = FilterState(
        status=list(status),
        priority=list(priority),
        assigned_to=list(assigned_to),
        starred=True if starred else None,
        search_text=search,
    )
    todos = run_with_client(ctx, lambda client: client.todos(filters))
    if not todos:
        console.print("[dim]No todos found[/dim]")
        return
    console.print(render_todos(todos))
    done = sum(1 for todo in todos if todo.status is TodoStatus.COMPLETED)
    console.print(f"{len(todos)} total, {done} done, {len(todos) - done} pending")


@cli.command()
@click.argument("todo_id", type=int)
@click.pass_context
def show(ctx, todo_id: int):
    """Show one todo."""
    todo = run_with_client(ctx, lambda client: client.todo(todo_id))
    console.print(render_todos([todo], title=f"Todo {todo.id}"))
    if todo.description:
        console.print(todo.description)
    for subtask in todo.subtasks:
        mark = "x" if subtask.completed else " "
        console.print(f"  [{mark}] {subtask.title}")


@cli.command()
@click.pass_context
def users(ctx):
    """List users that todos can be assigned to."""
    console.print(render_users(run_with_client(ctx, lambda client: client.users())))


# Writing

@cli.command()
@click.argument("title")
@click.option("--due", required=True, type=click.DateTime(formats=DATE_FORMATS))
@click.option("--description", "-d")
@click.option("--priority", "-p", type=click.Choice([p.value for p in Priority], case_sensitive=False))
@click.option("--star", is_flag=True)
@click.option("--assign", "-a", multiple=True, type=int, help="User id")
@click.pass_context
def add(ctx, title, due, description, priority, star, assign):
    """Create a todo."""
    payload = {"title": title, "due_date": due}
    if description:
        payload["description"] = description
    if priority:
        payload["priority"] = priority.upper()
    if star:
        payload["starred"] = True
    if assign:
        payload["assigned_to"] = list(assign)
    todo = run_with_client(ctx, lambda client: client.create_todo(payload))
    console.print(f"[green]✅ Created todo {todo.id}: {todo.title}[/green]")


@cli.command()
@click.argument("todo_id", type=int)
@click.option("--title")
@click.option("--description", "-d")
@click.option("--due", type=click.DateTime(formats=DATE_FORMATS))
@click.option("--priority", "-p", type=click.Choice([p.value for p in Priority], case_sensitive=False))
@click.option("--status", "-s", type=click.Choice([s.value for s in TodoStatus], case_sensitive=False))
@click.pass_context
def update(ctx, todo_id, title, description, due, priority, status):
    """Change fields of a todo."""
    patch = {}
    if title is not None:
        patch["title"] = title
    if description is not None:
        patch["description"] = description
    if due is not None:
        patch["due_date"] = due
    if priority:
        patch["priority"] = priority.upper()
    if status:
        patch["status"] = status.upper()
    todo = run_with_client(ctx, lambda client: client.update_todo(todo_id, patch))
    console.print(f"[green]✅ Updated todo {todo.id}[/green]")


@cli.command()
@click.argument("todo_id", type=int)
@click.pass_context
def done(ctx, todo_id: int):
    """Mark a todo completed."""
    run_with_client(ctx, lambda client: client.mutations.update_status(todo_id, TodoStatus.COMPLETED))
    console.print(f"[green]✅ Completed todo {todo_id}[/green]")


@cli.command()
@click.argument("todo_id", type=int)
@click.pass_context
def star(ctx, todo_id: int):
    """Toggle the star on a todo."""

    async def toggle(client: TodoSyncClient):
        return await client.mutations.toggle_starred(await client.todo(todo_id))

    todo = run_with_client(ctx, toggle)
    console.print(f"Todo {todo.id} {'starred' if todo.starred else 'unstarred'}")


@cli.command()
@click.argument("todo_id", type=int)
@click.confirmation_option(prompt="Delete this todo?")
@click.pass_context
def delete(ctx, todo_id: int):
    """Delete a todo."""
    run_with_client(ctx, lambda client: client.delete_todo(todo_id))
    console.print(f"Deleted todo {todo_id}")


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
