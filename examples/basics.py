import asyncio
import random

from orchestrator import Orchestrator, with_callback

# ------------------------------------------------------------------------------------------------
# A data source for one request: the account can be looked up directly by id, and the id itself
# can come from the account or from the user's profile.


async def load_profile():
    await asyncio.sleep(0.02)
    return {"name": "Alice", "accountId": "acct-42"}


@with_callback
def load_account(deps, done):
    # Callback-style client: done(error, value)
    loop = asyncio.get_running_loop()
    loop.call_later(0.01, done, None, {"id": deps["accountId"], "plan": "pro"})


def flaky_lookup(deps):
    if random.random() < 0.5:
        raise ConnectionError("lookup service unavailable")
    return deps["profile"]["accountId"]


orchestrator = Orchestrator(
    {
        "profile": load_profile,
        "account": ["accountId", load_account],
        "accountId": [
            ["account", lambda deps: deps["account"]["id"]],
            ["profile", flaky_lookup],
            ["profile", lambda deps: deps["profile"]["accountId"]],
        ],
        "greeting": [
            "profile",
            "account",
            lambda deps: f"Hi {deps['profile']['name']}, you're on {deps['account']['plan']}",
        ],
    }
)

orchestrator.on_timing(
    lambda event: print(
        f"  {event.name or '<get>':<10} waited {event.wait_duration * 1000:6.2f}ms, "
        f"fetched in {event.fetch_duration * 1000:6.2f}ms"
    )
)


async def main():
    print()
    print("=" * 100)
    print("Resolving a value and its dependencies")
    print("-" * 100)
    print()

    scope = orchestrator.scope()
    print(await scope.greeting())

    print()
    print("=" * 100)
    print("Cached values are not fetched again within a scope")
    print("-" * 100)
    print()

    print(await scope.get("profile", "accountId"))

    print()
    print("=" * 100)
    print("Seeding a scope with known values")
    print("-" * 100)
    print()

    seeded = orchestrator.scope({"profile": {"name": "Bob", "accountId": "acct-7"}})
    print(await seeded.greeting())

    print()
    print("=" * 100)
    print("Cost statistics carry over between scopes")
    print("-" * 100)
    print()

    for _ in range(5):
        await orchestrator.scope().accountId()

    for key, paths in orchestrator.spec.items():
        for path in paths:
            stats = orchestrator.stats.get(path.producer.fn)
            if stats is not None:
                print(f"  {key:<10} via {list(path.dependencies)}: {stats}")


if __name__ == "__main__":
    asyncio.run(main())
