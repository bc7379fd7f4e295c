def transition_batch_status(current: str, action: str) -> str:
    if action == "reset":
        return "pending"

    if action == "start_scoring":
        if current == "pending":
            return "scoring"
        return current

    if action == "complete_matching":
        if current in {"pending", "scoring"}:
            return "matched"
        return current

    if action == "reveal":
        if current == "matched":
            return "revealed"
        return current

    return current


def transition_pairing_status(current: str, action: str) -> str:
    if action == "accept":
        if current == "pending":
            return "accepted"
        return current

    if action == "decline":
        if current == "pending":
            return "declined"
        return current

    if action == "promote":
        # Cupid-sent pairs wait on the receiver again, even if the algorithm had accepted them.
        if current == "accepted":
            return "pending"
        return current

    return current
