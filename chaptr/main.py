import signal
import time
import typer
from pathlib import Path
from typing import Optional
from pydantic import ValidationError

from chaptr.config.loader import load_config
from chaptr.config.models import AppConfig, JobSettings
from chaptr.domain.errors import ResolutionError
from chaptr.domain.events import CapabilityResolved, InterruptRequested
from chaptr.infrastructure.event_bus import EventBus
from chaptr.infrastructure.ffmpeg import FFmpegAdapter
from chaptr.infrastructure.ffprobe import FFprobeAdapter
from chaptr.infrastructure.file_scanner import FileScanner
from chaptr.infrastructure.gpu_capability import query_gpu_name, resolve_concurrency
from chaptr.infrastructure.housekeeping import HousekeepingService
from chaptr.infrastructure.logging import setup_logging
from chaptr.pipeline.job import JobPipeline
from chaptr.pipeline.orchestrator import Orchestrator
from chaptr.ui.console import ConsoleReporter

DEFAULT_CONFIG_PATH = Path("conf/chaptr.yaml")

app = typer.Typer(help="chaptr - batch transcode with EDL chapter markers")


@app.command()
def encode(
    source_dir: Path = typer.Argument(..., help="Directory tree to transcode"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to YAML config (default: conf/chaptr.yaml if present)"),
    threads: Optional[int] = typer.Option(None, "--threads", "-t", help="Concurrent encoder sessions (skips GPU detection)"),
    height: Optional[int] = typer.Option(None, "--height", help="Target frame height"),
    codec: Optional[str] = typer.Option(None, "--codec", help="Target codec as reported by ffprobe (e.g. av1)"),
    encoder: Optional[str] = typer.Option(None, "--encoder", help="ffmpeg video encoder (e.g. av1_nvenc)"),
    cq: Optional[int] = typer.Option(None, "--cq", help="Constant quality value (0-63)"),
    preset: Optional[str] = typer.Option(None, "--preset", help="Encoder preset"),
    ext: Optional[str] = typer.Option(None, "--ext", help="Output extension"),
    tolerance: Optional[float] = typer.Option(None, "--tolerance", help="Allowed duration difference in seconds"),
    log_path: Optional[Path] = typer.Option(None, "--log-path", help="Path to log file (default: <source_dir>/chaptr.log)"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging"),
):
    """Transcode every media file under SOURCE_DIR and embed EDL chapters."""
    if not source_dir.is_dir():
        typer.secho(f"Error: {source_dir} does not exist or is not a directory", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    try:
        if config_path is not None:
            config = load_config(config_path)
        elif DEFAULT_CONFIG_PATH.exists():
            config = load_config(DEFAULT_CONFIG_PATH)
        else:
            config = AppConfig()

        # Apply CLI overrides (validated on assignment)
        if threads is not None: config.general.threads = threads
        if height is not None: config.encoder.height = height
        if codec is not None: config.encoder.codec = codec
        if encoder is not None: config.encoder.encoder = encoder
        if cq is not None: config.encoder.cq = cq
        if preset is not None: config.encoder.preset = preset
        if ext is not None: config.encoder.output_extension = ext
        if tolerance is not None: config.encoder.duration_tolerance_s = tolerance
        if log_path is not None: config.general.log_path = str(log_path)
        if debug: config.general.debug = True

        log_path_value = Path(config.general.log_path) if config.general.log_path else None
        logger = setup_logging(source_dir, debug=config.general.debug, log_path=log_path_value)
        logger.info(f"chaptr started: source={source_dir.absolute()}")
        logger.info(
            f"Config: codec={config.encoder.codec}, encoder={config.encoder.encoder}, "
            f"height={config.encoder.height}, cq={config.encoder.cq}, preset={config.encoder.preset}, "
            f"ext={config.encoder.output_extension}, tolerance={config.encoder.duration_tolerance_s:g}s, "
            f"threads={config.general.threads or 'auto'}"
        )

        bus = EventBus()
        reporter = ConsoleReporter(bus)

        if config.general.clean_transient:
            HousekeepingService(config.naming.transient_prefix).cleanup_transient_files(source_dir)

        gpu_name = None
        try:
            if config.general.threads is None:
                gpu_name = query_gpu_name()
            budget = resolve_concurrency(config.general.threads, gpu_name=gpu_name)
        except ResolutionError as e:
            logger.error(f"Cannot size the encoder pool: {e}")
            typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=2)
        logger.info(f"Concurrency: {budget} (gpu={gpu_name or 'n/a'}, override={config.general.threads is not None})")
        bus.publish(CapabilityResolved(budget=budget, gpu_name=gpu_name, overridden=config.general.threads is not None))

        scanner = FileScanner(
            extensions=config.general.extensions,
            min_size_bytes=config.general.min_size_bytes
        )
        pipeline = JobPipeline(
            settings=JobSettings.from_config(config),
            event_bus=bus,
            ffprobe_adapter=FFprobeAdapter(),
            ffmpeg_adapter=FFmpegAdapter(event_bus=bus),
        )
        orchestrator = Orchestrator(
            config=config,
            event_bus=bus,
            file_scanner=scanner,
            job_pipeline=pipeline,
            budget=budget,
        )

        def _on_sigterm(signum, frame):
            logger.info("SIGTERM received")
            bus.publish(InterruptRequested())

        previous_handler = signal.signal(signal.SIGTERM, _on_sigterm)
        start_time = time.monotonic()
        try:
            summary = orchestrator.run(source_dir)
        finally:
            signal.signal(signal.SIGTERM, previous_handler)

        reporter.print_summary(summary, time.monotonic() - start_time)
        if summary.interrupted:
            raise typer.Exit(code=130)
        if summary.failed_files:
            raise typer.Exit(code=1)

    except KeyboardInterrupt:
        # Active jobs were already terminated and cleaned up by the orchestrator
        typer.secho("\n✓ Transcoding stopped by user (Ctrl+C)", fg=typer.colors.YELLOW)
        raise typer.Exit(code=130)

    except ValidationError as e:
        typer.secho(f"Error: invalid configuration: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    except typer.Exit:
        raise

    except Exception as e:
        typer.secho(f"Fatal Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

if __name__ == "__main__":
    app()
