#!/usr/bin/env python3
"""
paperflip - Main CLI

Turns long-form papers into a feed of short narrated segments with
captions and resumable reading progress.

Features:
- PDF/DOCX/TXT ingestion split into bounded segments
- Word-by-word captions synced to system TTS, with sentence-level
  dictation when the voice reports no word boundaries
- Reading position saved per document and resumed on reopen
- Favourites and persistent playback settings
"""

import asyncio
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import click
from rich.live import Live
from rich.text import Text

from paperflip import __version__
from paperflip.extract_text import extract_file
from paperflip.feed.narration import NarrationAdapter
from paperflip.feed.narration_pyttsx3 import create_engine
from paperflip.feed.playback import PlaybackController, PlaybackMode, PlaybackPhase, PlaybackState
from paperflip.feed.segmenter import get_boundary_finder, segment_text, split_sentences
from paperflip.feed.session import open_feed
from paperflip.feed.text_utils import caption_window, estimate_reading_seconds, granular_progress, parse_words
from paperflip.ingest import IngestError, ingest_file
from paperflip.store import database
from paperflip.store.collection import StoreError
from paperflip.store.database import DEFAULT_SETTINGS, DocumentNotFoundError
from paperflip.store.settings_sync import SettingsSync, create_preferences
from paperflip.utils import logger
from paperflip.utils.config import config


@click.group()
@click.version_option(version=__version__)
def cli():
    """
    paperflip

    Read papers as a feed of narrated, captioned segments.
    """
    pass


@cli.command()
@click.argument("input_file", type=click.Path(exists=True))
@click.option("--id", "document_id", default=None, help="Document id (default: file name)")
def ingest(input_file: str, document_id: Optional[str]):
    """
    Add a PDF, DOCX or text file to the library.

    Re-adding the same file keeps its reading position unless the text changed.
    """
    input_path = Path(input_file)
    logger.header(f"Ingesting: {input_path.name}")

    try:
        record = asyncio.run(ingest_file(input_path, document_id=document_id))
    except (IngestError, StoreError) as e:
        logger.error(str(e))
        sys.exit(1)

    logger.info(f"Open it with: paperflip read \"{record.document_id}\"")


@cli.command()
@click.argument("input_file", type=click.Path(exists=True))
@click.option("--sentences", is_flag=True, help="Also list the sentence spans of each segment")
def segments(input_file: str, sentences: bool):
    """
    Preview how a file will be segmented.

    Nothing is stored.
    """
    input_path = Path(input_file)
    logger.header(f"Segmenting: {input_path.name}")

    try:
        text = extract_file(input_path)
    except (ValueError, RuntimeError) as e:
        logger.error(str(e))
        sys.exit(1)

    found = segment_text(text, config.max_segment_length)
    logger.info(f"Found {len(found)} segments:\n")

    for index, segment in enumerate(found, 1):
        preview = segment[:50].replace("\n", " ")
        logger.console.print(
            f"  {index:3}. {preview:<50} "
            f"({len(segment):,} chars, ~{estimate_reading_seconds(segment):.0f}s)",
            highlight=False,
            markup=False,
        )
        if sentences:
            for span in split_sentences(segment):
                logger.console.print(
                    f"        [{span.start:>4}-{span.end:<4}] {span.text.strip()[:60]}",
                    highlight=False,
                    markup=False,
                )


@cli.command()
@click.option("-n", "--limit", type=int, default=None, help="Show at most this many documents")
@click.option("--favourites", is_flag=True, help="Only show favourites")
def library(limit: Optional[int], favourites: bool):
    """
    List documents, most recently viewed first.
    """
    documents = asyncio.run(database.get_recent_uploads(limit=limit))
    if favourites:
        documents = [d for d in documents if d.is_favourite]

    if not documents:
        logger.info("Library is empty")
        return

    logger.header("Library")
    for record in documents:
        marker = "★" if record.is_favourite else " "
        viewed = _format_timestamp(record.last_viewed_at)
        logger.console.print(
            f"  {marker} {record.document_id:<40} "
            f"{record.current_segment_index + 1:>4}/{record.total_segments:<4} "
            f"{record.progress_percent:>3}%  {viewed}",
            highlight=False,
            markup=False,
        )


@cli.command()
@click.argument("document_id")
def read(document_id: str):
    """
    Play a document with live captions.

    Controls (type, then Enter):
      Enter  pause / resume
      n      next segment
      p      previous segment
      q      quit

    Progress is saved on pause, at the end of each segment and on exit.
    """
    try:
        asyncio.run(_read(document_id))
    except KeyboardInterrupt:
        logger.info("Stopped")
    except DocumentNotFoundError as e:
        logger.error(str(e))
        sys.exit(1)


async def _read(document_id: str) -> None:
    loop = asyncio.get_running_loop()

    preferences = create_preferences()
    settings_sync = SettingsSync(None, preferences)
    await settings_sync.start()

    engine = create_engine(loop)
    adapter = NarrationAdapter(engine)
    try:
        session = await open_feed(
            document_id,
            adapter=adapter,
            preferences=preferences,
            scheduler=loop,
            mount=False,
        )
    except DocumentNotFoundError:
        settings_sync.stop()
        if engine is not None:
            engine.close()
        raise

    if not session.document.segments:
        logger.error(f"{document_id} has no segments to play")
        settings_sync.stop()
        if engine is not None:
            engine.close()
        return

    controller = session.controller
    finished = asyncio.Event()
    word_count = config.word_count
    stdin_attached = False

    logger.header(f"Reading: {document_id}")

    try:
        with Live(console=logger.console, auto_refresh=False, transient=True) as live:

            def on_state(state: PlaybackState) -> None:
                live.update(render_caption(controller, state, word_count), refresh=True)
                if state.phase == PlaybackPhase.IDLE and state.resumed_once:
                    finished.set()

            session.unsubscribers.append(controller.subscribe(on_state))

            def on_key() -> None:
                command = sys.stdin.readline().strip().lower()
                if command == "":
                    controller.toggle_pause()
                elif command == "n":
                    controller.next()
                elif command == "p":
                    controller.previous()
                elif command == "q":
                    finished.set()

            if sys.stdin.isatty():
                loop.add_reader(sys.stdin, on_key)
                stdin_attached = True

            controller.mount()
            await finished.wait()
    finally:
        if stdin_attached:
            loop.remove_reader(sys.stdin)
        session.close()
        settings_sync.stop()
        await session.wait_idle()
        if engine is not None:
            engine.close()

    state = controller.state
    logger.success(
        f"Saved position: segment {state.active_index + 1}/{len(controller.segments)}"
    )


def render_caption(controller: PlaybackController, state: PlaybackState, word_count: int = 8) -> Text:
    """Caption block for the active segment with the spoken range highlighted."""
    segment = controller.active_segment
    total = len(controller.segments)
    dictation = state.mode == PlaybackMode.DICTATION

    percent = granular_progress(state.active_index, state.current_char_index, len(segment), total)
    status = "paused" if state.is_paused else state.mode.value

    caption = Text()
    caption.append(f"{state.active_index + 1}/{total}  {percent}%  [{status}]\n\n", style="info")

    words = caption_window(
        parse_words(segment),
        state.highlight_start,
        state.highlight_end,
        word_count=word_count,
        dictation=dictation,
    )
    for index, word in enumerate(words):
        if index:
            caption.append(" ")
        active = word.end > state.highlight_start and word.start < max(
            state.highlight_end, state.highlight_start + 1
        )
        caption.append(word.word, style="caption.active" if active else "caption")

    return caption


@cli.command()
@click.argument("document_id")
def favourite(document_id: str):
    """
    Add a document to favourites, or remove it.
    """
    value = asyncio.run(database.toggle_favourite(document_id))
    if value is None:
        logger.error(f"Could not update {document_id}")
        sys.exit(1)

    if value:
        logger.success(f"Added {document_id} to favourites")
    else:
        logger.success(f"Removed {document_id} from favourites")


@cli.command()
@click.argument("document_id")
@click.option("-y", "--yes", is_flag=True, help="Don't ask for confirmation")
def delete(document_id: str, yes: bool):
    """
    Remove a document and its reading progress.
    """
    if not yes:
        click.confirm(f"Delete {document_id}?", abort=True)

    if not asyncio.run(database.delete_document(document_id)):
        logger.error(f"Document {document_id} not found")
        sys.exit(1)

    logger.success(f"Deleted {document_id}")


@cli.command()
@click.argument("key", required=False)
@click.argument("value", required=False)
def settings(key: Optional[str], value: Optional[str]):
    """
    Show settings, or change one: paperflip settings isMuted true
    """
    if key is None:
        current = asyncio.run(database.get_settings()).to_dict()
        logger.header("Settings")
        for name in DEFAULT_SETTINGS:
            logger.console.print(f"  {name:<16} {current[name]!r}", highlight=False, markup=False)
        return

    if key not in DEFAULT_SETTINGS:
        logger.error(f"Unknown setting: {key}")
        logger.info(f"Available: {', '.join(DEFAULT_SETTINGS)}")
        sys.exit(1)

    if value is None:
        current = asyncio.run(database.get_settings()).to_dict()
        logger.console.print(f"{key} = {current[key]!r}", highlight=False, markup=False)
        return

    try:
        parsed = _parse_setting(key, value)
    except ValueError as e:
        logger.error(str(e))
        sys.exit(1)

    if asyncio.run(database.update_settings({key: parsed})) is None:
        logger.error(f"Could not save {key}")
        sys.exit(1)

    logger.success(f"{key} = {parsed!r}")


def _parse_setting(key: str, value: str) -> Any:
    """Convert a command-line value to the type of the setting's default."""
    default = DEFAULT_SETTINGS[key]

    if isinstance(default, bool):
        lowered = value.lower()
        if lowered in ("1", "true", "yes", "on"):
            return True
        if lowered in ("0", "false", "no", "off"):
            return False
        raise ValueError(f"{key} expects true or false, got {value!r}")

    if isinstance(default, int):
        try:
            return int(value)
        except ValueError:
            raise ValueError(f"{key} expects a whole number, got {value!r}") from None

    if isinstance(default, float):
        try:
            return float(value)
        except ValueError:
            raise ValueError(f"{key} expects a number, got {value!r}") from None

    return value


@cli.command()
def info():
    """
    Show system information and configuration.
    """
    logger.header("paperflip")

    logger.console.print("[bold]Paths:[/bold]")
    logger.console.print(f"  Project root: {config.project_root}")
    logger.console.print(f"  Data:         {config.data_dir}")

    logger.console.print("\n[bold]Segmentation:[/bold]")
    logger.console.print(f"  Max segment length: {config.max_segment_length}")
    logger.console.print(f"  Sentence finder:    {get_boundary_finder().name}")
    logger.console.print(f"  Locale:             {config.locale}")

    logger.console.print("\n[bold]Playback:[/bold]")
    logger.console.print(f"  Dictation fallback after: {config.watchdog_delay}s")
    logger.console.print(f"  Progress save delay:      {config.debounce_delay}s")
    logger.console.print(f"  Caption words:            {config.word_count}")

    logger.console.print("\n[bold]Dependencies:[/bold]")
    for module in ("pyttsx3", "icu"):
        try:
            __import__(module)
            status = "[green]OK[/green]"
        except ImportError:
            status = "[red]NOT FOUND[/red]"
        logger.console.print(f"  {module:<12} {status}")


def _format_timestamp(ms: int) -> str:
    if not ms:
        return "never"
    return datetime.fromtimestamp(ms / 1000).strftime("%Y-%m-%d %H:%M")


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
