"""User-facing copy and one-shot prompt add-ons.

Copy returned to the user is French. Add-ons are short instructions appended
to the next agent prompt and are consumed after a single call.
"""

from __future__ import annotations

from sophia.brain.deferred_topics import DeferralOutcome
from sophia.brain.state import (
    DeferredSignalAddon,
    MachineType,
    PauseReason,
    PendingRelaunchConsent,
    ResumeNotice,
    SessionType,
    SupervisorState,
)

__all__ = [
    "deferred_signal_addon",
    "consent_question",
    "decline_message",
    "unclear_drop_message",
    "resume_message",
    "render_addons",
]


def deferred_signal_addon(outcome: DeferralOutcome) -> DeferredSignalAddon | None:
    """Full acknowledgment on first mention, subtle on the second, silent after."""
    topic = outcome.topic
    if outcome.action == "created" or topic.trigger_count <= 1:
        level = "full"
    elif topic.trigger_count == 2:
        level = "subtle"
    else:
        return None
    return DeferredSignalAddon(
        machine_type=topic.machine_type,
        action_target=topic.action_target,
        summary=topic.latest_summary or topic.machine_type.value,
        level=level,
    )


def consent_question(pending: PendingRelaunchConsent) -> str:
    target = pending.action_target
    latest = pending.summaries[-1] if pending.summaries else None
    kind = pending.machine_type

    if kind is MachineType.BREAKDOWN_ACTION:
        if target and latest:
            return (
                f"Tout à l'heure tu me parlais de {target} ({latest.lower()}). "
                "Tu veux qu'on s'en occupe maintenant ?"
            )
        if target:
            return f'Tu voulais qu\'on simplifie "{target}". On s\'y met ?'
        return "Tu voulais qu'on débloque une action. Tu veux qu'on en parle maintenant ?"
    if kind is MachineType.CREATE_ACTION:
        if target:
            return f'Tu voulais créer "{target}". On le fait maintenant ?'
        return "Tu avais une idée d'action à créer. Tu veux qu'on s'y mette ?"
    if kind is MachineType.UPDATE_ACTION:
        if target:
            return f'Tu voulais modifier "{target}". On fait ça maintenant ?'
        return "Tu voulais modifier une action. Tu veux qu'on s'en occupe ?"
    if kind is MachineType.DEEP_REASONS:
        if target:
            return f"Tu voulais qu'on creuse un peu plus {target}. Tu veux qu'on en parle ?"
        return "Tu voulais explorer quelque chose de plus profond. Tu veux en parler maintenant ?"
    if kind is MachineType.TOPIC_SERIOUS:
        if target:
            return f"Tu voulais parler de {target}. Tu veux qu'on en discute maintenant ?"
        return "Tu avais un sujet important à aborder. Tu veux en parler ?"
    if target:
        return f"Au fait, tu voulais parler de {target}. On y va ?"
    return "Tu voulais qu'on discute de quelque chose. Tu veux en parler ?"


def decline_message(pending: PendingRelaunchConsent) -> str:
    target = pending.action_target
    if pending.machine_type.is_action_scoped:
        if target:
            return f'Ok, pas de souci. Tu pourras me redemander pour "{target}" quand tu veux.'
        return "Ok, pas de souci. Tu pourras me redemander quand tu veux."
    if pending.machine_type is MachineType.DEEP_REASONS:
        return "Ok, on laisse ça pour l'instant. Tu pourras en reparler quand tu te sentiras prêt."
    if target:
        return f"Ok, on reparlera de {target} une autre fois si tu veux."
    return "Ok, on en reparlera une autre fois."


def unclear_drop_message() -> str:
    return "Pas de souci, on laisse ça de côté. Tu me fais signe si tu veux y revenir."


def resume_message(notice: ResumeNotice) -> str:
    target = notice.action_target
    kind = notice.session_type
    if kind is SessionType.BREAKDOWN_ACTION_FLOW:
        if target:
            return f"Ok, on reprend ! Pour {target}, tu me disais que ça bloquait. Où est-ce qu'on en était ?"
        return "Ok, on reprend ! Tu voulais qu'on débloque une action. On en était où ?"
    if kind is SessionType.CREATE_ACTION_FLOW:
        if target:
            return f'Ok, on reprend ! On créait "{target}". Tu confirmes les paramètres ?'
        return "Ok, on reprend la création d'action. Où on en était ?"
    if kind is SessionType.UPDATE_ACTION_FLOW:
        if target:
            return f"Ok, on reprend ! On modifiait {target}. Tu veux toujours faire ce changement ?"
        return "Ok, on reprend la modification. Tu veux toujours la faire ?"
    if kind is SessionType.DEEP_REASONS_EXPLORATION:
        if target:
            return f"Ok, on reprend notre exploration sur {target}. Qu'est-ce qui te revient ?"
        return "Ok, on reprend notre discussion. Qu'est-ce qui te revient ?"
    if target:
        return f"Ok, on reprend ! On parlait de {target}."
    return "Ok, on reprend notre discussion !"


def _deferred_addon_text(addon: DeferredSignalAddon) -> str:
    label = addon.action_target or addon.summary
    if addon.level == "full":
        return (
            "DEFERRED TOPIC: the user raised something that will be handled once the "
            f'current flow ends ("{label}"). Acknowledge it in one short sentence, '
            "then continue the current flow."
        )
    return (
        f'DEFERRED TOPIC (mentioned again): "{label}" is already noted. At most a '
        "brief parenthesis, then continue the current flow."
    )


def _resume_addon_text(notice: ResumeNotice) -> str:
    softer = ""
    if notice.reason is PauseReason.FIREFIGHTER:
        softer = " Stay gentle: the user just went through a hard moment."
    return (
        "RESUMED FLOW: the conversation is back on the flow that was interrupted. "
        f'Open with something close to: "{resume_message(notice)}"{softer}'
    )


def _consent_addon_text(pending: PendingRelaunchConsent) -> str:
    return (
        "RELAUNCH QUESTION PENDING: the user was asked whether to pick up a deferred "
        f'topic ("{consent_question(pending)}"). Do not start that topic until they answer yes.'
    )


def render_addons(state: SupervisorState) -> list[str]:
    """Prompt add-ons for the next agent call, in a stable order."""
    addons: list[str] = []
    if state.resume_from_safety is not None:
        addons.append(_resume_addon_text(state.resume_from_safety))
    if state.deferred_signal_addon is not None:
        addons.append(_deferred_addon_text(state.deferred_signal_addon))
    if state.ask_relaunch_consent and state.pending_relaunch is not None:
        addons.append(_consent_addon_text(state.pending_relaunch))
    return addons
