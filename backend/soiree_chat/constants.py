# User facing messages (French), shared by services and routers.

ERR_SERVER = "Erreur serveur"
ERR_INVALID_DATA = "Données invalides"
ERR_NOT_AUTHENTICATED = "Non authentifié"
ERR_INVALID_TOKEN = "Token invalide"
ERR_EXPIRED_TOKEN = "Token expiré"
ERR_ADMIN_ONLY = "Accès refusé. Admin uniquement"
ERR_USER_NOT_FOUND = "Utilisateur introuvable"
ERR_INVALID_EMAIL = "Email invalide"
ERR_WS_AUTH_REQUIRED = "Authentification requise"
ERR_WS_AUTH_TIMEOUT = "Authentification expirée"

ERR_INVALID_CONV_ID = "ID de conversation invalide"
ERR_CONV_NOT_FOUND = "Conversation non trouvée"
ERR_CONV_ACCESS_DENIED = "Accès refusé à cette conversation"
ERR_INVALID_MESSAGE_ID = "ID de message invalide"
ERR_MESSAGE_NOT_FOUND = "Message non trouvé"
ERR_EMPTY_CONTENT = "Le message ne peut pas être vide"
ERR_INVALID_MESSAGE_TYPE = "Type de message invalide"
ERR_SELF_INVITE = "Vous ne pouvez pas vous inviter vous-même"
ERR_RECIPIENT_NOT_ADMIN = "Le destinataire doit être administrateur"
ERR_INVITATION_EXISTS = "Une invitation est déjà en attente"
ERR_INVALID_INVITATION_ID = "ID d'invitation invalide"
ERR_INVITATION_NOT_FOUND = "Invitation non trouvée"
ERR_INVITATION_NOT_YOURS = "Cette invitation ne vous est pas destinée"
ERR_INVITATION_ALREADY_HANDLED = "Invitation déjà traitée"
ERR_INVALID_ACTION = "Action invalide (accept ou reject)"

ERR_INVALID_GROUP_ID = "ID de groupe invalide"
ERR_GROUP_NOT_FOUND = "Groupe non trouvé"
ERR_GROUP_NAME_REQUIRED = "Le nom du groupe est requis"
ERR_NOT_GROUP_MEMBER = "Vous n'êtes pas membre de ce groupe"
ERR_NOT_GROUP_ADMIN = "Seuls les administrateurs du groupe peuvent effectuer cette action"
ERR_ALREADY_MEMBER = "L'utilisateur est déjà membre du groupe"
ERR_GROUP_INVITATION_EXISTS = "L'utilisateur a déjà une invitation en attente"
ERR_INVALID_LIMIT = "Limite invalide"
ERR_INVALID_CURSOR = "Curseur de pagination invalide"
ERR_QUERY_TOO_SHORT = "La recherche doit contenir au moins 2 caractères"
ERR_RECIPIENT_REQUIRED = "Le destinataire est requis"
ERR_NOTIFICATION_TYPE_REQUIRED = "Le type de notification est requis"
ERR_INVALID_NOTIFICATION_TYPE = "Type de notification invalide"
ERR_TITLE_REQUIRED = "Le titre est requis"
ERR_BODY_REQUIRED = "Le contenu est requis"

MSG_INVITATION_SENT = "Invitation envoyée"
MSG_INVITATIONS_FETCHED = "Invitations récupérées"
MSG_INVITATION_ACCEPTED = "Invitation acceptée"
MSG_INVITATION_REJECTED = "Invitation refusée"
MSG_INVITATION_CANCELLED = "Invitation annulée"
MSG_CONVERSATIONS_FETCHED = "Conversations récupérées"
MSG_MESSAGES_FETCHED = "Messages récupérés"
MSG_MESSAGE_SENT = "Message envoyé"
MSG_MESSAGE_READ = "Message marqué comme lu"
MSG_MARKED_READ = "Messages marqués comme lus"
MSG_USERS_FOUND = "Utilisateurs trouvés"
MSG_GROUP_CREATED = "Groupe créé avec succès"
MSG_GROUPS_FETCHED = "Groupes récupérés"
MSG_MEMBERS_FETCHED = "Membres récupérés"
MSG_GROUP_LEFT = "Vous avez quitté le groupe"
MSG_UNREAD_COUNT = "Nombre de messages non lus"
MSG_NOTIFICATION_SENT = "Notification envoyée avec succès"

# push notification texts
PUSH_CHAT_INVITATION_BODY = "Vous invite à discuter"
PUSH_INVITATION_ACCEPTED_BODY = "A accepté votre invitation"
PUSH_GROUP_INVITATION_TITLE = "📨 Nouvelle invitation de groupe"
PUSH_GROUP_INVITATION_BODY = "{inviter} vous invite à rejoindre \"{group}\""
PUSH_GROUP_MESSAGE_TITLE = "👥 {group}"
PUSH_GROUP_MESSAGE_BODY = "{firstname}: {content}"

# group system messages
SYSTEM_MEMBER_JOINED = "{firstname} {lastname} a rejoint le groupe"
SYSTEM_MEMBER_LEFT = "{name} a quitté le groupe"
SYSTEM_UNKNOWN_MEMBER = "Un membre"
