"""Command-line interface for socialsync.

This module provides a Typer-based CLI over the view objects, printing their
state with rich.

Commands:
- verify: Check connectivity and show the signed-in user
- feed: Show the home feed
- post: Publish a post (optionally with an image)
- comments: Show a post's comment thread, or reply to it
- search: Search people and posts
- notifications: Show notifications, optionally marking them read
- inbox: List conversations and group chats, read or send messages
- hashtag: Show posts for a hashtag
- profile: Show a user's profile page
- upload: Upload an image and print its public URL
- watch: Stream realtime changes for a while
- metrics: Print Prometheus metrics

Example:
    $ socialsync --email ada@example.com --password secret feed --pages 2
    $ socialsync search "python"
    $ socialsync comments <post-id> --message "Nice!" --reply-to <comment-id>
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import NoReturn, Optional

import typer
from rich.console import Console
from rich.table import Table

from socialsync.backend import AsyncBackendClient
from socialsync.comments import CommentThread, can_reply, iter_thread
from socialsync.config import Bucket, ChangeEvent, settings
from socialsync.feed import FeedView
from socialsync.hashtags import HashtagView, extract_hashtags
from socialsync.logging import setup_logging
from socialsync.messaging import Inbox
from socialsync.metrics import generate_metrics_output
from socialsync.models import ChangePayload, FeedPost
from socialsync.notifications import NotificationCenter
from socialsync.profiles import ProfileView
from socialsync.search import SearchView
from socialsync.telemetry import shutdown_telemetry
from socialsync.uploads import Uploader
from socialsync.utils import format_iso, truncate

# Initialize CLI app
app     = typer.Typer(
    name="socialsync",
    help="Client for a hosted social network backend",
    add_completion=False,
)
console = Console()

_credentials: dict[str, Optional[str]] = {"email": None, "password": None}


# =============================================================================
# Helper Functions
# =============================================================================


def run_async(coro):
    """Run async coroutine in event loop."""
    return asyncio.run(coro)


@asynccontextmanager
async def connect() -> AsyncIterator[AsyncBackendClient]:
    """Open a backend client, signing in with the global credentials if given."""
    backend = AsyncBackendClient()
    try:
        if _credentials["email"] and _credentials["password"]:
            await backend.sign_in_with_password(_credentials["email"], _credentials["password"])
        elif backend.session is not None:
            await backend.get_user()
        yield backend
    finally:
        await backend.close()


def fail(action: str, error: Exception) -> NoReturn:
    console.print(f"\n❌ [bold red]{action} failed: {error}[/bold red]")
    raise typer.Exit(code=1)


def posts_table(title: str, posts: list[FeedPost]) -> Table:
    table = Table(title=title)
    table.add_column("ID", style="dim")
    table.add_column("Author", style="cyan")
    table.add_column("Content")
    table.add_column("♥", justify="right", style="magenta")
    table.add_column("💬", justify="right", style="green")
    table.add_column("Posted", style="yellow")

    for post in posts:
        table.add_row(
            post.id,
            f"@{post.profile.username}",
            truncate(post.content, 60),
            f"{post.likes_count}{' *' if post.is_liked else ''}",
            str(post.comments_count),
            format_iso(post.created_at) or "",
        )
    return table


@app.callback()
def main_options(
    email: Optional[str] = typer.Option(
        None,
        "--email",
        envvar="SOCIALSYNC_EMAIL",
        help="Sign in with this email (otherwise SOCIALSYNC_ACCESS_TOKEN is used)",
    ),
    password: Optional[str] = typer.Option(
        None,
        "--password",
        envvar="SOCIALSYNC_PASSWORD",
        help="Password for --email",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose logging",
    ),
) -> None:
    """Client for a hosted social network backend."""
    _credentials.update(email=email, password=password)
    if verbose:
        setup_logging(level="DEBUG", json_logs=False, log_file=None)


# =============================================================================
# CLI Commands
# =============================================================================


@app.command()
def verify() -> None:
    """Verify backend connectivity and show who is signed in.

    Examples:
        $ socialsync verify
    """
    console.print("🔐 [bold cyan]socialsync Connection[/bold cyan]\n")
    console.print(f"🌐 Backend: [yellow]{settings.backend_url}[/yellow]")
    console.print(f"🔑 Key: [yellow]{settings.redact_key()}[/yellow]\n")

    async def _verify():
        try:
            async with connect() as backend:
                await backend.execute(backend.table("profiles").select("id").limit(1))
                session = backend.session

                table = Table(title="Session", show_header=False)
                table.add_column("Field", style="cyan")
                table.add_column("Value", style="green")
                if session and session.user:
                    table.add_row("User ID", session.user.id)
                    table.add_row("Email", session.user.email or "N/A")
                else:
                    table.add_row("User", "anonymous")
                console.print(table)
        except Exception as e:
            fail("Connection", e)

        console.print("\n✅ [bold green]Connection successful![/bold green]")

    run_async(_verify())


@app.command()
def feed(
    pages: int = typer.Option(1, "--pages", "-n", min=1, help="Number of pages to load"),
    page_size: Optional[int] = typer.Option(None, "--page-size", help="Posts per page"),
) -> None:
    """Show the newest posts.

    Examples:
        $ socialsync feed --pages 3
    """

    async def _feed():
        try:
            async with connect() as backend:
                view = FeedView(backend, page_size=page_size)
                await view.fetch_page(0)
                for _ in range(pages - 1):
                    if not view.has_more:
                        break
                    await view.load_more()
        except Exception as e:
            fail("Feed", e)

        console.print(posts_table("Feed", view.posts))
        if view.has_more:
            console.print("[dim]More posts available (use --pages)[/dim]")

    run_async(_feed())


@app.command()
def post(
    content: str = typer.Argument(..., help="Post text; #hashtags are linked"),
    image: Optional[Path] = typer.Option(None, "--image", "-i", help="Image file to attach"),
) -> None:
    """Publish a post.

    Examples:
        $ socialsync post "Hello #python" --image ./cat.png
    """

    async def _post():
        try:
            async with connect() as backend:
                image_url = None
                if image is not None:
                    image_url = await Uploader(backend).upload_path(Bucket.POST_IMAGES, image)
                created = await FeedView(backend).create_post(content, image_url=image_url)
        except Exception as e:
            fail("Post", e)

        console.print(f"✅ [bold green]Posted {created.id}[/bold green]")
        tags = extract_hashtags(content)
        if tags:
            console.print("🏷️  " + " ".join(f"[cyan]#{tag}[/cyan]" for tag in tags))

    run_async(_post())


@app.command()
def comments(
    post_id: str = typer.Argument(..., help="Post ID"),
    message: Optional[str] = typer.Option(None, "--message", "-m", help="Add a comment"),
    reply_to: Optional[str] = typer.Option(None, "--reply-to", help="Comment ID to reply to"),
) -> None:
    """Show a post's comment thread, optionally adding to it."""

    async def _comments():
        try:
            async with connect() as backend:
                thread = CommentThread(backend, post_id)
                if message:
                    await thread.submit(message, parent_id=reply_to)
                else:
                    await thread.load()
        except Exception as e:
            fail("Comments", e)

        console.print(f"💬 [bold cyan]{thread.total} comments[/bold cyan]\n")
        for depth, comment in iter_thread(thread.roots):
            author = comment.profile.username if comment.profile else "unknown"
            marker = "" if can_reply(depth) else " [dim](no replies)[/dim]"
            console.print(
                f"{'    ' * depth}[cyan]@{author}[/cyan] {comment.content} "
                f"[dim]{comment.id}[/dim]{marker}"
            )

    run_async(_comments())


@app.command()
def search(query: str = typer.Argument(..., help="Text to look for")) -> None:
    """Search people and posts."""

    async def _search():
        try:
            async with connect() as backend:
                view = SearchView(backend)
                users, posts = await view.search(query)
        except Exception as e:
            fail("Search", e)

        people = Table(title="People")
        people.add_column("Username", style="cyan")
        people.add_column("Name")
        people.add_column("Bio", style="dim")
        for profile in users:
            people.add_row(f"@{profile.username}", profile.name, truncate(profile.bio or "", 50))
        console.print(people)
        console.print(posts_table("Posts", posts))

    run_async(_search())


@app.command()
def notifications(
    mark_read: bool = typer.Option(False, "--mark-read", help="Mark all as read afterwards"),
) -> None:
    """Show the latest notifications."""

    async def _notifications():
        try:
            async with connect() as backend:
                center = NotificationCenter(backend)
                await center.fetch()
                items = list(center.notifications)
                unread = center.unread_count
                if mark_read:
                    await center.mark_all_as_read()
        except Exception as e:
            fail("Notifications", e)

        table = Table(title=f"Notifications ({unread} unread)")
        table.add_column("", width=1)
        table.add_column("Type", style="cyan")
        table.add_column("From")
        table.add_column("Message")
        table.add_column("When", style="yellow")
        for n in items:
            table.add_row(
                "" if n.read else "•",
                str(n.type),
                f"@{n.actor.username}" if n.actor else "",
                n.message or "",
                format_iso(n.created_at) or "",
            )
        console.print(table)

    run_async(_notifications())


@app.command()
def inbox(
    conversation: Optional[str] = typer.Option(None, "--conversation", "-c", help="Conversation ID"),
    group: Optional[str] = typer.Option(None, "--group", "-g", help="Group chat ID"),
    send: Optional[str] = typer.Option(None, "--send", "-s", help="Message to send"),
) -> None:
    """List conversations, or read/send messages in one of them."""

    async def _inbox():
        try:
            async with connect() as backend:
                box = Inbox(backend)
                if conversation:
                    if send:
                        await box.send_message(conversation, send)
                    messages = await box.conversation_messages(conversation)
                elif group:
                    if send:
                        await box.send_group_message(group, send)
                    messages = await box.group_messages(group)
                else:
                    messages = None
                    await asyncio.gather(box.fetch_conversations(), box.fetch_group_chats())
        except Exception as e:
            fail("Inbox", e)

        if messages is not None:
            for msg in messages:
                sender = msg.profile.username if msg.profile else msg.sender_id
                console.print(f"[yellow]{format_iso(msg.created_at)}[/yellow] [cyan]@{sender}[/cyan] {msg.content}")
            return

        table = Table(title="Conversations")
        table.add_column("ID", style="dim")
        table.add_column("With", style="cyan")
        table.add_column("Last message")
        for conv in box.conversations:
            names = ", ".join(f"@{p.username}" for p in conv.participants if p.user_id != backend.current_user_id)
            table.add_row(conv.id, names, truncate(conv.last_message.content, 50) if conv.last_message else "")
        console.print(table)

        groups = Table(title="Group chats")
        groups.add_column("ID", style="dim")
        groups.add_column("Name", style="cyan")
        groups.add_column("Members", justify="right")
        groups.add_column("Last message")
        for chat in box.group_chats:
            groups.add_row(
                chat.id,
                chat.name,
                str(chat.member_count),
                truncate(chat.last_message.content, 50) if chat.last_message else "",
            )
        console.print(groups)

    run_async(_inbox())


@app.command()
def hashtag(tag: str = typer.Argument(..., help="Hashtag, with or without #")) -> None:
    """Show posts tagged with a hashtag."""

    async def _hashtag():
        try:
            async with connect() as backend:
                view = HashtagView(backend)
                await view.load(tag)
        except Exception as e:
            fail("Hashtag", e)

        console.print(posts_table(f"#{view.tag} ({view.post_count} posts)", view.posts))

    run_async(_hashtag())


@app.command()
def profile(username: str = typer.Argument(..., help="Username")) -> None:
    """Show a user's profile, follow counts and posts."""

    async def _profile():
        try:
            async with connect() as backend:
                view = ProfileView(backend)
                await view.load(username)
        except Exception as e:
            fail("Profile", e)

        if view.profile is None:
            console.print(f"❓ [yellow]No user named @{username}[/yellow]")
            raise typer.Exit(code=1)

        p = view.profile
        console.print(f"👤 [bold cyan]{p.name}[/bold cyan] @{p.username}")
        if p.bio:
            console.print(p.bio)
        if p.work:
            console.print(f"💼 {p.work}")
        console.print(
            f"[green]{view.followers_count:,}[/green] followers · "
            f"[green]{view.following_count:,}[/green] following\n"
        )
        console.print(posts_table("Posts", view.posts))

    run_async(_profile())


@app.command()
def upload(
    path: Path = typer.Argument(..., help="Image file"),
    bucket: Bucket = typer.Option(Bucket.POST_IMAGES, "--bucket", "-b", help="Target bucket"),
) -> None:
    """Upload an image and print its public URL."""

    async def _upload():
        try:
            async with connect() as backend:
                url = await Uploader(backend).upload_path(bucket, path)
        except Exception as e:
            fail("Upload", e)

        console.print(f"✅ [bold green]Uploaded[/bold green] {url}")

    run_async(_upload())


@app.command()
def watch(
    seconds: float = typer.Option(60.0, "--seconds", "-t", help="How long to listen"),
) -> None:
    """Print realtime changes to posts, messages and notifications."""

    def _print_change(change: ChangePayload) -> None:
        row = change.new or change.old
        console.print(f"⚡ [cyan]{change.table}[/cyan] {change.event_type} {row.get('id', '')}")

    async def _watch():
        try:
            async with connect() as backend:
                channel = backend.realtime().channel("cli-watch")
                for table in ("posts", "messages", "group_chat_messages"):
                    channel.on_postgres_changes(ChangeEvent.ALL, table, callback=_print_change)
                if backend.current_user_id:
                    channel.on_postgres_changes(
                        ChangeEvent.INSERT,
                        "notifications",
                        callback=_print_change,
                        filter=f"user_id=eq.{backend.current_user_id}",
                    )
                await channel.subscribe()
                console.print(f"👂 Listening for {seconds:g}s...")
                await asyncio.sleep(seconds)
        except Exception as e:
            fail("Watch", e)

    run_async(_watch())


@app.command()
def metrics() -> None:
    """Print Prometheus metrics collected in this process."""
    console.print(generate_metrics_output().decode(), markup=False)


def main() -> None:
    """Main entry point for CLI."""
    try:
        app()
    finally:
        shutdown_telemetry()


if __name__ == "__main__":
    main()
