##########################################################################
#                                                                        #
#  This file (telegram_ui.py) runs the telegram bot that serves the      #
#  chat settings dashboard                                               #
#                                                                        #
##########################################################################


###########
# IMPORTS #
###########

from datetime import datetime
import logging
import os
from telegram import Update
from telegram.ext import (
    Application,
    CommandHandler,
    ContextTypes,
    filters
)
from settings_dashboard.dashboard_contracts import DashboardConfigError, DashboardOptions
from settings_dashboard.session_controller import open_dashboard
from settings_dashboard.telegram_transport import TelegramDashboardRouter
from settings_dashboard.transport import TransportError
from settings_dashboard.utils import (
    ChatSettingsManager,
    ConfigManager,
    CustomFormatter,
    DEFAULT_LAYOUT,
    buildCategories,
    loadLayout
)



###########
# LOGGING #
###########

# Clear any previous logging handlers
for handler in logging.root.handlers[:]:
    logging.root.removeHandler(handler)

# Set the basic config to append logging data to a file
logPath = "logs/"
os.makedirs(logPath, exist_ok=True)
logFilename = "telegram_log_" + datetime.now().strftime("%Y%m%d-%H%M%S") + ".txt"
logging.basicConfig(
    filename=logPath+logFilename,
    filemode="a",
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s (%(filename)s:%(lineno)d)",
    level=logging.DEBUG
)

# Create a stream handler for cli output
console = logging.StreamHandler()
console.setLevel(logging.INFO)
console.setFormatter(CustomFormatter())
# add the handler to the root logger
logging.getLogger().addHandler(console)

# set higher logging level for httpx to avoid all GET and POST requests being logged
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("telegram").setLevel(logging.INFO)

logger = logging.getLogger(__name__)



###########
# GLOBALS #
###########

config = ConfigManager()
chatSettings = ChatSettingsManager(
    config.db_conninfo,
    connectTimeout=int(config.runtimeSetting("database.connect_timeout_seconds", 2))
)
dashboards = TelegramDashboardRouter()
dashboardOptions = DashboardOptions.from_runtime_settings(config.runtime)
settingsLayout = loadLayout(os.environ["DASH_LAYOUT_FILE"]) if os.environ.get("DASH_LAYOUT_FILE") else DEFAULT_LAYOUT



###########################
# DEFINE COMMAND HANDLERS #
###########################

async def settingsMenu(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Opens the settings dashboard for the member who issued the command."""
    chat = update.effective_chat
    message = update.effective_message
    user = update.effective_user
    topicID = message.message_thread_id if message.is_topic_message else None

    logger.info(f"Settings command issued by {user.name} (user_id: {user.id}) in chat {chat.id}.")

    categories = buildCategories(settingsLayout, chatSettings, chat.id)
    transport = dashboards.createTransport(context.bot, chat.id, user.id, threadID=topicID)

    try:
        controller = await open_dashboard(
            user.id,
            categories,
            transport,
            dashboardOptions,
            bot_name=config.botName or context.bot.first_name
        )
        dashboards.track(transport, controller)
    except DashboardConfigError as err:
        logger.error(f"The settings dashboard could not be opened because of a configuration error:  {err}.")
        await message.reply_text(text="The settings menu is not configured correctly. Check the bot logs for details.")
    except TransportError as err:
        logger.warning(f"The following error occurred while sending the settings menu:  {err}.")


async def privateSettings(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    message = update.effective_message
    try:
        await message.reply_text(text="The settings menu can only be opened in a group chat.")
    except Exception as err:
        logger.warning(f"The following error occurred while sending a telegram message:  {err}.")


async def errorHandler(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    logger.error("Exception while handling an update:", exc_info=context.error)



#################
# Main Function #
#################

def main() -> None:
    # Run the bot
    writeTimeout = int(config.runtimeSetting("telegram.get_updates_write_timeout", 500))
    application = Application.builder().token(config.bot_token).concurrent_updates(True).get_updates_write_timeout(writeTimeout).build()

    # Dashboard callback queries and the edit form conversation
    application.add_handlers(dashboards.handlers())

    # Add command handlers
    application.add_handler(CommandHandler("settings", settingsMenu, filters=filters.ChatType.GROUPS))
    application.add_handler(CommandHandler("settings", privateSettings, filters=filters.ChatType.PRIVATE))

    application.add_error_handler(errorHandler)

    # Run the bot until the user presses Ctrl-C
    pollInterval = float(config.runtimeSetting("telegram.poll_interval_seconds", 5.0))
    application.run_polling(allowed_updates=Update.ALL_TYPES, poll_interval=pollInterval, bootstrap_retries=3, timeout=50)


if __name__ == "__main__":
    main()
