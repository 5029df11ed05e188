from dataclasses import dataclass

from pymongo.database import Database

from .direct_chat import ConversationRepository, InvitationRepository, MessageRepository
from .groups import (
    GroupInvitationRepository,
    GroupMemberRepository,
    GroupMessageRepository,
    GroupRepository,
    ReadReceiptRepository,
)
from .users import TokenRepository, UserRepository


@dataclass
class Repositories:
    users: UserRepository
    tokens: TokenRepository
    invitations: InvitationRepository
    conversations: ConversationRepository
    messages: MessageRepository
    groups: GroupRepository
    members: GroupMemberRepository
    group_invitations: GroupInvitationRepository
    group_messages: GroupMessageRepository
    receipts: ReadReceiptRepository

    @classmethod
    def from_db(cls, db: Database) -> "Repositories":
        return cls(
            users=UserRepository(db),
            tokens=TokenRepository(db),
            invitations=InvitationRepository(db),
            conversations=ConversationRepository(db),
            messages=MessageRepository(db),
            groups=GroupRepository(db),
            members=GroupMemberRepository(db),
            group_invitations=GroupInvitationRepository(db),
            group_messages=GroupMessageRepository(db),
            receipts=ReadReceiptRepository(db),
        )
