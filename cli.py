#!/usr/bin/env python3
"""
GamePilot - Command Line Interface

Exercise the decision core offline against the simulated environment
and manage stored models.

Usage:
    python cli.py simulate --game demo.game --cycles 200
    python cli.py train --game demo.game --algorithm DQN --episodes 20
    python cli.py models list
    python cli.py models delete demo.game
    python cli.py models prune
"""

import argparse
import json
import logging
import sys

from core.config import AssistantConfig, ConfigError
from rl.base import AlgorithmType
from rl.environment import SimulatedEnvironment
from storage.game_registry import GameProfile
from system import AssistantSystem


class ManualClock:
    """Monotonic clock advanced explicitly by the simulation."""

    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='gamepilot',
        description='Game assistant decision core'
    )
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Verbose output')
    parser.add_argument('--config', '-c', type=str, default=None,
                        help='JSON configuration file (default: environment)')
    parser.add_argument('--data-dir', '-d', type=str, default=None,
                        help='Override the data directory')

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    # Simulate command
    sim_parser = subparsers.add_parser('simulate', help='Run a decision loop against a simulated game')
    sim_parser.add_argument('--game', '-g', type=str, default='simulated.game',
                            help='Game id')
    sim_parser.add_argument('--genre', type=str, default='',
                            help='Game genre (used for transfer similarity)')
    sim_parser.add_argument('--mode', '-m', choices=['auto', 'copilot'], default='auto',
                            help='Auto executes; copilot accepts the top suggestion')
    sim_parser.add_argument('--cycles', '-n', type=int, default=200,
                            help='Number of decision cycles')
    sim_parser.add_argument('--algorithm', '-a', type=str, default=None,
                            choices=[t.name for t in AlgorithmType],
                            help='Force one algorithm instead of meta-learned selection')
    sim_parser.add_argument('--seed', type=int, default=None)

    # Train command
    train_parser = subparsers.add_parser('train', help='Offline training of one algorithm')
    train_parser.add_argument('--game', '-g', type=str, default='simulated.game')
    train_parser.add_argument('--algorithm', '-a', type=str, default='DQN',
                              choices=[t.name for t in AlgorithmType])
    train_parser.add_argument('--episodes', '-e', type=int, default=20)
    train_parser.add_argument('--steps', '-s', type=int, default=50,
                              help='Max steps per episode')

    # Models command
    models_parser = subparsers.add_parser('models', help='Manage stored models')
    models_sub = models_parser.add_subparsers(dest='models_command')
    models_sub.add_parser('list', help='List stored models')
    delete_parser = models_sub.add_parser('delete', help='Delete all models of a game')
    delete_parser.add_argument('game', type=str)
    models_sub.add_parser('prune', help='Delete models of games no longer registered')

    return parser


def load_config(args) -> AssistantConfig:
    config = AssistantConfig.load(args.config) if args.config else AssistantConfig.from_env()
    if args.data_dir:
        config.storage.data_dir = args.data_dir
    if getattr(args, 'seed', None) is not None:
        config.algorithm.seed = args.seed
    return config


def cmd_simulate(args, config: AssistantConfig) -> int:
    if args.algorithm:
        config.meta.forced_algorithm = int(AlgorithmType[args.algorithm])
    algo_cfg = config.algorithm
    env = SimulatedEnvironment(algo_cfg.state_size, algo_cfg.action_size,
                               episode_length=50, seed=algo_cfg.seed, game_id=args.game)
    current = {'state': env.reset()}
    clock = ManualClock()

    def execute(action) -> bool:
        next_state, reward, done = env.step(action.action_index)
        current['state'] = env.reset() if done else next_state
        return reward > 0

    print(f"Simulating {args.cycles} {args.mode} cycles on '{args.game}'...")
    with AssistantSystem(config) as system:
        system.attach_game(GameProfile(args.game, name=args.game, genre=args.genre))
        if args.mode == 'auto':
            loop = system.auto_mode(args.game, lambda: current['state'],
                                    executor=execute, clock=clock)
        else:
            loop = system.copilot_mode(args.game, lambda: current['state'],
                                       executor=execute, clock=clock)

        for _ in range(args.cycles):
            clock.advance(config.decision.decision_interval_ms / 1000.0)
            result = loop.step()
            if args.mode == 'copilot' and result.candidates:
                loop.accept_suggestion(result.candidates[0])

        print("\nResults")
        print("=" * 50)
        print(json.dumps(loop.stats(), indent=2))
        print("\nMeta-learner")
        print("-" * 50)
        summary = system.meta_learner.performance_summary()
        for name, record in summary.items():
            if name == 'best':
                continue
            print(f"  {name:<11} trials={record['trials']:<5} "
                  f"avg_reward={record['average_reward']:+.3f} "
                  f"success={record['success_rate']:.2f}")
        print(f"  Best: {summary['best']['algorithm']}"
              f"{' (forced)' if summary['best']['forced'] else ''}")
    return 0


def cmd_train(args, config: AssistantConfig) -> int:
    algorithm_type = AlgorithmType[args.algorithm]
    with AssistantSystem(config) as system:
        session = system.attach_game(args.game)
        algorithm = session.selector.get(algorithm_type)
        print(f"Training {algorithm.name} on '{args.game}' "
              f"for {args.episodes} episodes x {args.steps} steps...")
        avg = algorithm.train(args.episodes, args.steps)
        print(f"  Average episodic reward: {avg:+.3f}")
        print(f"  Training steps: {algorithm.train_steps} "
              f"(rejected: {algorithm.rejected_steps})")
        print(f"  Exploration rate: {algorithm.exploration_rate:.4f}")
    print("Model saved.")
    return 0


def cmd_models(args, config: AssistantConfig) -> int:
    system = AssistantSystem(config)
    storage = system.storage

    if args.models_command == 'list':
        games = storage.list_games()
        if not games:
            print("No stored models.")
            return 0
        print(f"Stored models in {storage.root}")
        print("=" * 50)
        for game in games:
            print(f"{game}:")
            for algorithm_type in storage.list_models(game):
                header = storage.read_header(game, algorithm_type)
                count = header[1] if header else '?'
                try:
                    name = AlgorithmType(algorithm_type).name
                except ValueError:
                    name = f"type {algorithm_type}"
                print(f"  {name:<11} {count} weights")
        return 0

    if args.models_command == 'delete':
        if system.remove_game(args.game):
            print(f"Deleted models for '{args.game}'.")
            return 0
        print(f"No models found for '{args.game}'.")
        return 1

    if args.models_command == 'prune':
        removed = system.prune_orphans()
        print(f"Pruned {len(removed)} orphaned game(s).")
        for name in removed:
            print(f"  {name}")
        return 0

    print("Usage: gamepilot models {list,delete,prune}")
    return 1


def main(argv=None):
    parser = create_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s'
    )

    if not args.command:
        parser.print_help()
        return 0

    try:
        config = load_config(args)
    except (ConfigError, OSError, ValueError) as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    commands = {
        'simulate': cmd_simulate,
        'train': cmd_train,
        'models': cmd_models,
    }
    return commands[args.command](args, config)


if __name__ == '__main__':
    sys.exit(main() or 0)
