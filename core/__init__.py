"""
Challenge Core

Anti-abuse challenge dispatch system.

Modules:
- core.dispatcher: ChallengeDispatcher (challenge / no-challenge decision)
- core.verifier: ResourceLoadVerifier, CaptchaOracle (resource gate, solving)
- core.stats: ChallengeStatsService (aggregates, session snapshots)

Components are imported from their modules directly; the session store in
`persistence` depends on `core.schemas`, so this package stays import-light.
"""
