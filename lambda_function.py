"""AWS Lambda handler for the locker room monitor roster run."""
import json
import logging
import os
import time
from typing import Any, Dict, List, Optional

from calendar_feed.ical_feed import IcalFeedClient
from processor.errors import ConfigError
from processor.models import TeamConfig, TeamRunResult
from processor.roster_engine import RosterEngine
from roster_output.csv_sink import CsvRosterSink
from roster_output.ics_sink import IcsExportSink
from storage.csv_storage import CsvLedgerStorage
from storage.dynamodb_storage import DynamoDBLedgerStorage
from storage.ledger import AssignmentLedger
from team_config.loader import Settings, load_teams

# Attributes every LogRecord carries; anything else came in through `extra`.
_RECORD_ATTRS = set(vars(logging.makeLogRecord({}))) | {'message', 'asctime'}


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        for key, value in vars(record).items():
            if key not in _RECORD_ATTRS and key not in log_data:
                log_data[key] = value

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def build_storage(settings: Settings):
    """Create the ledger storage backend named by the settings."""
    if settings.ledger_backend == 'dynamodb':
        return DynamoDBLedgerStorage(table_name=settings.ledger_table)
    return CsvLedgerStorage(directory=settings.ledger_dir)


def select_teams(
    teams: List[TeamConfig],
    requested: Optional[List[str]]
) -> List[TeamConfig]:
    """
    Restrict the run to the requested team names, keeping config order.

    Raises:
        ConfigError: If a requested team is not configured
    """
    if not requested:
        return teams

    known = {team.name for team in teams}
    unknown = [name for name in requested if name not in known]
    if unknown:
        raise ConfigError(f"No team found with the name(s): {', '.join(unknown)}")
    return [team for team in teams if team.name in requested]


def _team_statistics(result: TeamRunResult, counts: Dict[str, int]) -> Dict[str, Any]:
    return {
        'events_fetched': result.events_fetched,
        'decisions': len(result.decisions),
        'monitors_assigned': sum(1 for d in result.decisions if d.monitor),
        'new_assignments': result.new_assignments,
        'reconciled': result.reconciled,
        'ledger_saved': result.saved,
        'assignment_counts': counts,
        'errors': result.errors,
    }


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler for the roster run.

    Args:
        event: EventBridge event payload; an optional `teams` list limits
            the run to those team names
        context: Lambda context object

    Returns:
        Response dict with statusCode and per-team statistics
    """
    setup_logging(os.environ.get('LOG_LEVEL', 'INFO'))
    logger = logging.getLogger(__name__)

    start_time = time.time()
    requested = (event or {}).get('teams')

    try:
        settings = Settings.from_env()
        teams = select_teams(
            load_teams(settings.teams_config, future_only=settings.future_only),
            requested
        )
    except ConfigError as e:
        logger.error(
            f"Invalid configuration: {e}",
            extra={'error_type': type(e).__name__},
            exc_info=True
        )
        return {
            'statusCode': 400,
            'body': json.dumps({
                'message': 'Invalid configuration',
                'error': str(e),
                'error_type': type(e).__name__,
                'duration_seconds': round(time.time() - start_time, 2)
            })
        }

    logger.info(
        "Roster run started",
        extra={
            'teams': [team.name for team in teams],
            'ledger_backend': settings.ledger_backend,
            'future_only': settings.future_only
        }
    )

    try:
        storage = build_storage(settings)
        ledger = AssignmentLedger()
        warnings = ledger.load(storage)
    except Exception as e:
        logger.error(
            f"Failed to load assignment ledger: {e}",
            extra={'error_type': type(e).__name__},
            exc_info=True
        )
        return {
            'statusCode': 500,
            'body': json.dumps({
                'message': 'Failed to load assignment ledger',
                'error': str(e),
                'error_type': type(e).__name__,
                'duration_seconds': round(time.time() - start_time, 2)
            })
        }

    source = IcalFeedClient(timeout=settings.timeout_seconds)
    roster_sink = CsvRosterSink(settings.output_dir)
    sinks = [roster_sink]
    if settings.ics_export:
        sinks.append(IcsExportSink(settings.output_dir))

    engine = RosterEngine(ledger)
    statistics = {}
    failed = []

    for team in teams:
        try:
            result = engine.run_team(
                team, source, storage, sinks, reconcile_from=roster_sink
            )
        except Exception as e:
            # One team's failure must not stop the others
            logger.error(
                f"Team {team.name} failed: {e}",
                extra={'team': team.name, 'error_type': type(e).__name__},
                exc_info=True
            )
            result = TeamRunResult(team=team.name, errors=[f"{type(e).__name__}: {e}"])

        counts = {name: ledger.counts_for(team.name).get(name, 0) for name in team.pool}
        statistics[team.name] = _team_statistics(result, counts)
        if not result.succeeded:
            failed.append(team.name)

        logger.info(
            f"Locker Room Monitor assignment counts for team {team.name}",
            extra={'team': team.name, 'assignment_counts': counts}
        )

    duration = round(time.time() - start_time, 2)

    if not failed:
        status, message = 200, 'Roster run completed successfully'
    elif len(failed) < len(teams):
        status, message = 207, 'Roster run completed with errors'
    else:
        status, message = 500, 'Roster run failed'

    log = logger.info if status == 200 else logger.error
    log(
        message,
        extra={
            'duration_seconds': duration,
            'failed_teams': failed,
            'ledger_warnings': warnings
        }
    )

    return {
        'statusCode': status,
        'body': json.dumps({
            'message': message,
            'statistics': statistics,
            'failed_teams': failed,
            'warnings': warnings,
            'duration_seconds': duration
        })
    }
