"""rireq ``init`` command -- shell integration scripts.

``rireq init bash`` prints a script meant to be evaluated from
``~/.bashrc``::

    eval "$(rireq init bash)"

The script records every interactive command in the background after it
runs and binds ``Ctrl-R`` to a fuzzy search over the ranked history.
"""

from __future__ import annotations

SUPPORTED_SHELLS = ("bash",)

_BASH_SCRIPT = """\
# rireq shell integration for bash
__rireq_last_histnum=""

__rireq_record() {
    local entry
    entry="$(HISTTIMEFORMAT='' builtin history 1)"
    [[ $entry =~ ^[[:space:]]*([0-9]+)[*[:space:]]+(.*)$ ]] || return 0
    # PROMPT_COMMAND also runs for empty prompts; record each entry once.
    [[ ${BASH_REMATCH[1]} == "$__rireq_last_histnum" ]] && return 0
    __rireq_last_histnum=${BASH_REMATCH[1]}
    ( {exe} record -- "${BASH_REMATCH[2]}" >/dev/null 2>&1 & )
}

__rireq_search() {
    local selected
    selected="$({exe} history --print0 | fzf --read0 --no-sort --height=40% --query="$READLINE_LINE")" || return
    READLINE_LINE=$selected
    READLINE_POINT=${#selected}
}

if [[ ";${PROMPT_COMMAND:-};" != *";__rireq_record;"* ]]; then
    PROMPT_COMMAND="__rireq_record${PROMPT_COMMAND:+;$PROMPT_COMMAND}"
fi

if [[ $- == *i* ]]; then
    bind -x '"\\C-r": __rireq_search'
fi
"""

_SCRIPTS = {"bash": _BASH_SCRIPT}


def init_script(shell: str, exe: str = "rireq") -> str:
    """Return the integration script for *shell*.

    Args:
        shell: Shell name; see :data:`SUPPORTED_SHELLS`.
        exe: Command used to invoke rireq from the script.

    Raises:
        ValueError: If *shell* is not supported.
    """
    template = _SCRIPTS.get(shell)
    if template is None:
        supported = ", ".join(f'"{name}"' for name in SUPPORTED_SHELLS)
        raise ValueError(f"Unknown shell: {shell} (only {supported} supported)")
    return template.replace("{exe}", exe)
