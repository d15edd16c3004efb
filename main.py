import argparse
import json
import signal
import sys
import time

from taskpilot import config, logger
from taskpilot.agent.orchestrator import create_orchestrator
from taskpilot.concurrency import LoopSupervisor, ResourceGuard
from taskpilot.health import HealthServer


def main(argv=None):
    """Main entry point for TaskPilot."""
    parser = argparse.ArgumentParser(prog='taskpilot', description='Autonomous task agent')
    sub = parser.add_subparsers(dest='command')

    sub.add_parser('serve', help='Run the background service (default)')

    run = sub.add_parser('run', help='Run one goal and print the outcome as JSON')
    run.add_argument('goal', help='Natural-language goal')
    run.add_argument('--context', default=None, help='Extra context for the planner')
    run.add_argument('--user', default='default', help='User id for memories')

    args = parser.parse_args(argv)

    if args.command == 'run':
        return run_goal(args.goal, args.context, args.user)
    run_service(config.HEALTH_PORT)
    return 0


def run_goal(goal: str, context: str = None, user_id: str = 'default') -> int:
    """Run a single goal in the foreground."""
    orchestrator = create_orchestrator()
    try:
        task = orchestrator.submit_task(goal, context=context, user_id=user_id)
        print(json.dumps(orchestrator.summarize_task(task), indent=2, default=str))
        return 0 if task.status.value == 'completed' else 1
    finally:
        orchestrator.shutdown(wait=False)
        orchestrator.store.close()


def run_service(health_port: int = 8080):
    """Run the agent with its background loops and health server."""
    guard = ResourceGuard('browser')
    orchestrator = create_orchestrator(guard=guard)
    supervisor = LoopSupervisor(metrics=orchestrator.metrics)

    def watch_lock():
        status = guard.status()
        if status['stale']:
            # Reclaim and free an abandoned browser session
            label = 'lock_watch'
            if guard.check_for_periodic_caller(label):
                guard.release(label)
        elif status['locked']:
            logger.debug('Browser lock held', holder=status['holder'], age_seconds=status['age_seconds'])

    def digest_memory():
        stats = orchestrator.store.get_stats()
        logger.info('Memory digest', **stats)

    supervisor.register('lock_watch', watch_lock, config.LOOP_CONFIG['lock_watch_interval_ms'])
    supervisor.register('memory_digest', digest_memory, config.LOOP_CONFIG['memory_digest_interval_ms'])

    logger.info('Starting TaskPilot service', provider=orchestrator.provider.name)
    supervisor.start()

    health = None
    if health_port > 0:
        def get_status():
            return {
                "ready": supervisor.running,
                "agent": orchestrator.get_status(),
                "loops": supervisor.get_status(),
                "lock": guard.status(),
            }

        health = HealthServer(
            port=health_port,
            status_provider=get_status,
            metrics_provider=orchestrator.metrics.to_prometheus_format,
        )
        health.start()

    def shutdown(signum, frame):
        """Graceful shutdown handler."""
        logger.info('Shutting down TaskPilot', signal=signum)

        supervisor.stop()
        if health:
            health.stop()
        orchestrator.shutdown(wait=False)
        orchestrator.store.close()

        status = orchestrator.get_status()
        logger.info('Shutdown complete',
                    tasks_completed=status['tasks_completed'],
                    tasks_failed=status['tasks_failed'])

        # Exit through sys.exit so atexit releases held locks
        sys.exit(0)

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    # Keep the main thread alive
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        shutdown(signal.SIGINT, None)


if __name__ == '__main__':
    sys.exit(main())
