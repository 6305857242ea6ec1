"""
Scopeboard CLI - Command-line interface for the engine.

Usage:
    scopeboard validate                  Check the CSV data for effects the engine cannot apply
    scopeboard effects <space>           Show a space's effects, dice rows and moves
    scopeboard play --players A B        Hot-seat text game
    scopeboard serve                     Run the REST API with uvicorn

Every command takes --data DIR (defaults to the bundled sample board).
"""

import argparse
import json
import logging
import sys


def main(argv=None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Scopeboard - Project Scope board game engine",
        prog="scopeboard",
    )
    parser.add_argument("--data", help="Directory of game CSV files (default: bundled sample)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Validate command
    subparsers.add_parser("validate", help="Validate the game data")

    # Effects command
    effects_parser = subparsers.add_parser("effects", help="Show a space's effects")
    effects_parser.add_argument("space", help="Space name, e.g. OWNER-SCOPE-INITIATION")
    effects_parser.add_argument("--visit", default="First", help="First or Subsequent")

    # Play command
    play_parser = subparsers.add_parser("play", help="Hot-seat text game")
    play_parser.add_argument("--players", nargs="+", default=["Player 1", "Player 2"], help="Player names")
    play_parser.add_argument("--seed", type=int, help="Seed for shuffles and dice")

    # Serve command
    serve_parser = subparsers.add_parser("serve", help="Run the REST API")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8000)

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.command == "validate":
        cmd_validate(args)
    elif args.command == "effects":
        cmd_effects(args)
    elif args.command == "play":
        cmd_play(args)
    elif args.command == "serve":
        cmd_serve(args)
    else:
        parser.print_help()
        sys.exit(1)


def load_database(args):
    from .data import CSVDatabase

    if not args.data:
        return CSVDatabase.sample()
    try:
        return CSVDatabase.from_directory(args.data)
    except FileNotFoundError as e:
        print(f"Error: {e}")
        sys.exit(1)


def cmd_validate(args):
    """Validate the game data."""
    from .engine_core import EffectsEngine

    database = load_database(args)
    status = database.status()
    print("Tables:")
    for name, rows in status["tables"].items():
        print(f"  {name}: {rows} rows")
    print("Cards: " + ", ".join(f"{t}={n}" for t, n in status["cards_by_type"].items()))

    issues = EffectsEngine(database).validate_effects_data()
    if issues:
        print(f"\n{len(issues)} issue(s):")
        for issue in issues:
            print(f"  - {issue}")
        sys.exit(1)
    print("\nNo issues found")


def cmd_effects(args):
    """Show a space's effects."""
    from .engine_core import EffectsEngine

    engine = EffectsEngine(load_database(args))
    print(json.dumps(engine.effects_summary(args.space, args.visit), indent=2))


def cmd_play(args, read=input):
    """Hot-seat text game."""
    import random

    from .engine_core import GameError, GameStateManager
    from .session import GameManager

    store = GameStateManager(database=load_database(args), rng=random.Random(args.seed))
    manager = GameManager(store)
    store.initialize_game(args.players)

    print("Commands: roll | draw <W|B|I|L|E> <n> | use <card_id> | moves | end [destination]")
    print("          negotiate | hand | quit")

    while True:
        state = store.get_state()
        player = state.current_player_state
        if state.game_phase.value == "COMPLETED":
            print(f"\n{state.last_action}")
            _print_summary(state)
            return

        turn = state.current_turn
        pending = ", ".join(a.description or a.type.value for a in turn.pending_actions) or "none"
        print(
            f"\n[{player.name}] {player.position} ({player.visit_type.value}) "
            f"${player.money:,} {player.time_spent}d scope ${player.scope_total_cost:,} | pending: {pending}"
        )

        try:
            line = read("> ").strip()
        except EOFError:
            return
        if not line:
            continue
        command, *rest = line.split()
        command = command.lower()
        if command == "quit":
            _print_summary(state)
            return

        try:
            for message in _run_command(manager, player.player_id, command, rest):
                print(f"  {message}")
        except GameError as e:
            print(f"  Error: {e}")
        if store.get_state().error:
            print(f"  Error: {store.get_state().error}")
            store.clear_error()


def _run_command(manager, player_id, command, rest):
    store = manager.store
    if command == "roll":
        result = manager.roll_dice(player_id)
        moves = f" -> {result.destination}" if result.destination else ""
        return [f"Rolled {result.roll}{moves}", *result.messages]
    if command == "draw" and len(rest) == 2:
        return [manager.perform_card_action(player_id, rest[0], f"Draw {rest[1]}")]
    if command == "use" and rest:
        return [manager.use_card(player_id, rest[0])]
    if command == "moves":
        return manager.available_moves(player_id) or ["No moves available"]
    if command == "hand":
        hand = store.get_player(player_id).cards
        return [
            f"{card.card_id} {card.card_name} ({card.immediate_effect or 'no effect'})"
            for card in hand.all_cards()
        ] or ["No cards"]
    if command == "negotiate":
        return manager.negotiate(player_id)
    if command == "end":
        destination = rest[0] if rest else None
        if destination is None:
            moves = manager.available_moves(player_id)
            destination = moves[0] if len(moves) == 1 else None
        next_player = manager.end_turn(player_id, destination)
        return [f"{next_player.name}'s turn"]
    return [f"Unknown command: {command}"]


def _print_summary(state):
    print("\nFinal standings:")
    for player in sorted(state.players, key=lambda p: (p.time_spent, -p.money)):
        print(f"  {player.name}: {player.time_spent} days, ${player.money:,}, scope ${player.scope_total_cost:,}")


def cmd_serve(args):
    """Run the REST API."""
    import uvicorn

    from .api import APIService, create_app
    from .session import SessionManager

    service = APIService(session_manager=SessionManager(load_database(args)))
    uvicorn.run(create_app(service), host=args.host, port=args.port)


if __name__ == "__main__":
    main()
