from __future__ import annotations

from ...models import RunRequest
from .descriptor import BackendDescriptor


def build_cli_args(request: RunRequest, backend: BackendDescriptor) -> list[str]:
    """
    Build the argument vector (without the command itself) for a run.

    Resuming with a session id uses the backend's resume template when it has
    one; otherwise the session id travels as a flag. The prompt is always last.
    """
    session_id = request.session_id or ""
    use_resume_template = bool(request.resume and session_id and backend.resume_args is not None)

    if use_resume_template:
        args = [*(backend.resume_args or ()), session_id]
    else:
        args = list(backend.base_args)
        if session_id:
            if request.resume and backend.resume_flag:
                args.extend([backend.resume_flag, session_id])
            elif backend.session_id_flag:
                args.extend([backend.session_id_flag, session_id])

    if request.model and backend.model_flag:
        args.extend([backend.model_flag, request.model])
    if request.system_prompt and backend.system_prompt_flag:
        args.extend([backend.system_prompt_flag, request.system_prompt])
    if request.skip_permissions and backend.skip_permissions_flag:
        args.append(backend.skip_permissions_flag)
    if request.allowed_tools and backend.allowed_tools_flag:
        args.extend([backend.allowed_tools_flag, " ".join(request.allowed_tools)])

    args.append(request.prompt)
    return args
