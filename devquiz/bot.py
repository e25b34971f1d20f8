import discord
from discord import app_commands
from discord.ext import commands
import logging
import asyncio
from typing import Dict, List, Optional
import os
from pathlib import Path

from .config_manager import ConfigManager
from .models import Answer, Difficulty, FeedbackTone, Phase, Question
from .question_bank import QuestionBankLoader, QuestionRepository
from .quiz_controller import QuizSession, SessionListener
from .quiz_engine import QuizEngine
from .score_manager import HighScoreManager, JsonFileStore

logger = logging.getLogger(__name__)

COLOR_OK = 0x00ff00
COLOR_WARNING = 0xff6600
COLOR_DANGER = 0xff0000
COLOR_INFO = 0x6699ff

MAX_BUTTON_LABEL = 80


def setup_error_logging(log_directory: str = "logs") -> None:
    """Add an errors.log handler and quiet discord.py's own loggers."""
    logs_dir = Path(log_directory)
    logs_dir.mkdir(parents=True, exist_ok=True)

    error_handler = logging.FileHandler(logs_dir / "errors.log", encoding='utf-8')
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    ))
    logging.getLogger().addHandler(error_handler)

    logging.getLogger('discord').setLevel(logging.WARNING)
    logging.getLogger('discord.http').setLevel(logging.WARNING)


class QuizView(discord.ui.View):
    """Answer buttons plus a Next button for one presented question."""

    def __init__(self, adapter: "DiscordSessionAdapter", answers: List[Answer]):
        super().__init__(timeout=None)
        self.adapter = adapter
        self.answers = list(answers)
        self.answer_buttons: List[discord.ui.Button] = []

        for index, answer in enumerate(self.answers):
            button = discord.ui.Button(
                label=answer.text[:MAX_BUTTON_LABEL],
                style=discord.ButtonStyle.secondary,
                custom_id=f"answer:{index}",
                row=min(index, 3)
            )
            button.callback = self._make_answer_callback(index)
            self.answer_buttons.append(button)
            self.add_item(button)

        self.next_button = discord.ui.Button(
            label="Next ➡️",
            style=discord.ButtonStyle.primary,
            custom_id="next",
            disabled=True,
            row=4
        )
        self.next_button.callback = self._on_next
        self.add_item(self.next_button)

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        if interaction.user.id != self.adapter.owner_id:
            await interaction.response.send_message(
                "Only the player who started this quiz can answer.", ephemeral=True
            )
            return False
        return True

    def _make_answer_callback(self, index: int):
        async def callback(interaction: discord.Interaction):
            await self.adapter.handle_answer_click(interaction, index)
        return callback

    async def _on_next(self, interaction: discord.Interaction):
        await self.adapter.handle_next_click(interaction)

    def reveal(self, selected: Optional[Answer], has_next: bool) -> None:
        """Color every answer as correct/incorrect and lock the answer buttons."""
        for answer, button in zip(self.answers, self.answer_buttons):
            if answer.is_correct:
                button.style = discord.ButtonStyle.success
            elif selected is not None and answer == selected:
                button.style = discord.ButtonStyle.danger
            button.disabled = True
        self.next_button.disabled = not has_next

    def lock(self) -> None:
        for item in self.children:
            item.disabled = True


class DiscordSessionAdapter(SessionListener):
    """
    Renders one QuizSession into a Discord channel.

    Session hooks are synchronous, so each one queues a coroutine; the queued
    coroutines run one at a time in the order the hooks fired.
    """

    def __init__(self, channel, owner_id: int, category: str, difficulty: str, on_finished=None):
        self.channel = channel
        self.owner_id = owner_id
        self.category = category
        self.difficulty = difficulty
        self.on_finished = on_finished
        self.session: Optional[QuizSession] = None
        self.message: Optional[discord.Message] = None
        self.view: Optional[QuizView] = None
        self._question: Optional[Question] = None
        self._lock = asyncio.Lock()
        self._pending = set()

    def bind(self, session: QuizSession) -> None:
        self.session = session

    # Session hooks

    def on_question_presented(self, question: Question, shuffled_answers: List[Answer]) -> None:
        self._question = question
        self.view = QuizView(self, shuffled_answers)
        progress = self.session.progress()
        self._schedule(self._send_question(question, self.view, progress['question_number'],
                                           progress['total_questions']))

    def on_tick(self, seconds_remaining: int) -> None:
        progress = self.session.progress()
        self._schedule(self._edit_question(
            self._question_embed(self._question, progress['question_number'],
                                 progress['total_questions'], seconds_remaining)
        ))

    def on_feedback(self, tone: FeedbackTone) -> None:
        logger.debug(f"Feedback tone '{tone.value}' for channel {getattr(self.channel, 'id', None)}")

    def on_answer_result(self, selected_answer: Answer, is_correct: bool, explanation: Optional[str]) -> None:
        has_next = self._has_next()
        self.view.reveal(selected_answer, has_next)
        embed = discord.Embed(
            title="✅ Correct!" if is_correct else "❌ Incorrect",
            description=self._question.prompt,
            color=COLOR_OK if is_correct else COLOR_DANGER
        )
        self._add_reveal_fields(embed, is_correct, has_next)
        self._schedule(self._edit_question(embed, self.view))

    def on_timeout(self) -> None:
        has_next = self._has_next()
        self.view.reveal(None, has_next)
        embed = discord.Embed(
            title="⏰ Time's Up!",
            description=self._question.prompt,
            color=COLOR_DANGER
        )
        self._add_reveal_fields(embed, False, has_next)
        self._schedule(self._edit_question(embed, self.view))

    def on_session_complete(self, score: int, total: int, percentage: int, is_new_record: bool) -> None:
        result = self.session.result
        embed = discord.Embed(
            title="🎉 Quiz Complete!" if result.should_celebrate else "🏁 Quiz Complete",
            description=result.summary(),
            color=COLOR_OK if percentage >= 80 else COLOR_INFO
        )
        if total == 0:
            embed.add_field(
                name="No Questions",
                value=f"No questions found for **{self.category}** / **{self.difficulty}**.",
                inline=False
            )
        embed.set_footer(text="Use /quiz to start a new quiz")
        self._schedule(self._send_embed(embed))
        self._finish()

    # Button handlers

    async def handle_answer_click(self, interaction: discord.Interaction, index: int) -> None:
        await interaction.response.defer()
        if not self.session.submit_answer(index):
            await interaction.followup.send("This question has already been answered.", ephemeral=True)

    async def handle_next_click(self, interaction: discord.Interaction) -> None:
        await interaction.response.defer()
        if not self.session.advance():
            await interaction.followup.send("There is no next question right now.", ephemeral=True)

    def stop(self) -> bool:
        """Abandon the session and lock the current question's buttons."""
        stopped = self.session.stop()
        if stopped:
            if self.view is not None:
                self.view.lock()
                self.view.stop()
                self._schedule(self._edit_question(None, self.view))
            self._finish()
        return stopped

    async def drain(self) -> None:
        """Wait for every queued Discord call to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # Rendering helpers

    def _has_next(self) -> bool:
        state = self.session.state
        return state.current_index + 1 < state.total_questions

    def _question_embed(self, question: Question, number: int, total: int, remaining: Optional[int]) -> discord.Embed:
        timer = self.session.timer_settings
        if remaining is None or remaining > timer.warning_threshold_seconds:
            color, timer_emoji, footer_text = COLOR_OK, "⏱️", "Pick an answer before time runs out"
        elif remaining > 2:
            color, timer_emoji, footer_text = COLOR_WARNING, "⚠️", "⚡ Time running out!"
        else:
            color, timer_emoji, footer_text = COLOR_DANGER, "🚨", "🚨 Final seconds!"

        embed = discord.Embed(
            title=f"🎯 Question {number}/{total}",
            description=question.prompt,
            color=color
        )
        if remaining is not None:
            embed.add_field(
                name=f"{timer_emoji} Time Remaining",
                value=f"{remaining} second{'s' if remaining != 1 else ''}",
                inline=True
            )
        embed.add_field(name="📚 Quiz", value=f"{self.category} · {self.difficulty}", inline=True)
        embed.set_footer(text=footer_text if remaining is not None else "Pick an answer")
        return embed

    def _add_reveal_fields(self, embed: discord.Embed, was_correct: bool, has_next: bool) -> None:
        correct = ", ".join(f"**{answer.text}**" for answer in self._question.correct_answers) or "None"
        embed.add_field(name="✅ Correct Answer", value=correct, inline=False)

        explanation = QuizSession.format_explanation(self._question, was_correct)
        if explanation:
            embed.add_field(name="💡 Explanation", value=explanation, inline=False)

        state = self.session.state
        embed.add_field(name="📊 Score", value=f"{state.score}/{len(state.history)}", inline=True)
        embed.set_footer(text="Press Next to continue" if has_next else "That was the final question")

    def _schedule(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(self._serialized(coro))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _serialized(self, coro) -> None:
        async with self._lock:
            try:
                await coro
            except discord.HTTPException as e:
                logger.error(f"Discord API error while rendering quiz in channel "
                             f"{getattr(self.channel, 'id', None)}: {e}")
            except Exception:
                logger.error(f"Unexpected error while rendering quiz in channel "
                             f"{getattr(self.channel, 'id', None)}", exc_info=True)

    async def _send_question(self, question: Question, view: QuizView, number: int, total: int) -> None:
        timer = self.session.timer_settings
        remaining = timer.duration_seconds if timer.enabled else None
        self.message = await self.channel.send(
            embed=self._question_embed(question, number, total, remaining),
            view=view
        )

    async def _edit_question(self, embed: Optional[discord.Embed], view: Optional[QuizView] = None) -> None:
        if self.message is None:
            return
        kwargs = {}
        if embed is not None:
            kwargs['embed'] = embed
        if view is not None:
            kwargs['view'] = view
        await self.message.edit(**kwargs)

    async def _send_embed(self, embed: discord.Embed) -> None:
        await self.channel.send(embed=embed)

    def _finish(self) -> None:
        if self.on_finished is not None:
            self.on_finished(self)


class QuizBot(commands.Bot):
    """Discord bot that runs devquiz sessions, one per channel"""

    def __init__(self, config=None):
        intents = discord.Intents.none()
        intents.guilds = True  # Required for slash commands

        command_prefix = '!'
        if config and 'bot' in config:
            command_prefix = config['bot'].get('command_prefix', '!')

        super().__init__(
            command_prefix=command_prefix,
            intents=intents,
            help_command=None
        )

        self.app_config = config or {}

        self.config_manager: Optional[ConfigManager] = None
        self.repository: Optional[QuestionRepository] = None
        self.bank_loader: Optional[QuestionBankLoader] = None
        self.quiz_engine: Optional[QuizEngine] = None
        self.score_manager: Optional[HighScoreManager] = None
        self.sessions: Dict[int, DiscordSessionAdapter] = {}

    async def setup_hook(self):
        """Called when the bot is starting up"""
        logger.info("Setting up bot components...")
        self.build_components()
        await self.setup_commands()
        logger.info("Bot setup completed successfully")

    def build_components(self) -> None:
        """Create the managers, load the question bank and open the score store."""
        self.config_manager = ConfigManager()
        rejected = self.config_manager.apply_config(self.app_config)
        for error in rejected:
            logger.error(f"Ignoring invalid setting: {error}")

        self.bank_loader = QuestionBankLoader(self.config_manager.get_question_directory())
        self.repository = self.bank_loader.load()
        self.quiz_engine = QuizEngine(self.repository)
        self.score_manager = HighScoreManager(JsonFileStore(self.config_manager.get_high_score_file()))
        logger.info(f"Loaded {len(self.repository)} questions in "
                    f"{len(self.repository.categories())} categories")

    async def setup_commands(self):
        """Register all slash commands"""

        @self.tree.command(name="help", description="Display available commands and their descriptions")
        async def help_command(interaction: discord.Interaction):
            await self.handle_help(interaction)

        @self.tree.command(name="quiz", description="Start a quiz for a category and difficulty")
        @app_commands.describe(category="Question category", difficulty="Difficulty tier")
        @app_commands.choices(difficulty=[
            app_commands.Choice(name=tier.value.title(), value=tier.value) for tier in Difficulty
        ])
        async def quiz_command(interaction: discord.Interaction, category: str,
                               difficulty: app_commands.Choice[str]):
            await self.handle_quiz(interaction, category, difficulty.value)

        @quiz_command.autocomplete("category")
        async def category_autocomplete(interaction: discord.Interaction, current: str):
            return [
                app_commands.Choice(name=category, value=category)
                for category in self.repository.categories()
                if current.lower() in category.lower()
            ][:25]

        @self.tree.command(name="stop", description="Stop the current quiz session")
        async def stop_command(interaction: discord.Interaction):
            await self.handle_stop(interaction)

        @self.tree.command(name="status", description="Show current quiz progress")
        async def status_command(interaction: discord.Interaction):
            await self.handle_status(interaction)

        @self.tree.command(name="best", description="Show the best score recorded so far")
        async def best_command(interaction: discord.Interaction):
            await self.handle_best(interaction)

        logger.info("Slash commands registered successfully")

    async def on_ready(self):
        """Called when the bot has successfully connected to Discord"""
        logger.info(f"Bot is ready! Logged in as {self.user}")
        try:
            synced = await self.tree.sync()
            logger.info(f"Synced {len(synced)} slash commands")
        except discord.HTTPException as e:
            logger.error(f"Failed to sync slash commands: {e}")

    async def on_error(self, event, *args, **kwargs):
        logger.error(f"An error occurred in event {event}", exc_info=True)

    def create_session(self, interaction: discord.Interaction, category: str, difficulty: str) -> DiscordSessionAdapter:
        adapter = DiscordSessionAdapter(
            channel=interaction.channel,
            owner_id=interaction.user.id,
            category=category,
            difficulty=difficulty,
            on_finished=self._release_session
        )
        session = QuizSession(
            self.quiz_engine,
            self.score_manager,
            listener=adapter,
            timer_settings=self.config_manager.get_timer_settings(),
            session_id=str(interaction.channel_id)
        )
        adapter.bind(session)
        self.sessions[interaction.channel_id] = adapter
        return adapter

    def _release_session(self, adapter: DiscordSessionAdapter) -> None:
        channel_id = getattr(adapter.channel, 'id', None)
        if self.sessions.get(channel_id) is adapter:
            del self.sessions[channel_id]

    async def handle_quiz(self, interaction: discord.Interaction, category: str, difficulty: str):
        """Handle /quiz command"""
        try:
            if interaction.channel_id in self.sessions:
                await self.send_warning_response(
                    interaction,
                    "A quiz is already running in this channel. Use `/stop` to end it first.",
                    "⚠️ Quiz In Progress"
                )
                return

            adapter = self.create_session(interaction, category, difficulty)
            adapter.session.configure(category, difficulty)

            best = self.score_manager.load_best()
            available = self.repository.count(category, difficulty)
            embed = discord.Embed(
                title="🎯 Quiz Started!",
                description=f"**{category}** · **{difficulty}**",
                color=COLOR_OK
            )
            timer = self.config_manager.get_timer_settings()
            embed.add_field(
                name="📊 Quiz Details",
                value=(
                    f"Matching questions: {available}\n"
                    f"Timer: {f'{timer.duration_seconds} seconds per question' if timer.enabled else 'off'}"
                ),
                inline=False
            )
            if best is not None:
                embed.add_field(name="🏆 Best Score", value=f"{best}%", inline=False)
            embed.set_footer(text="Get ready for the first question!")
            await interaction.response.send_message(embed=embed)

            adapter.session.start()

        except discord.HTTPException as e:
            logger.error(f"Discord API error in quiz command: {e}")
            adapter = self.sessions.get(interaction.channel_id)
            if adapter is not None:
                adapter.stop()

    async def handle_stop(self, interaction: discord.Interaction):
        """Handle /stop command"""
        adapter = self.sessions.get(interaction.channel_id)
        if adapter is None:
            await self.send_info_response(interaction, "There is no active quiz in this channel.")
            return

        if interaction.user.id != adapter.owner_id:
            await self.send_warning_response(interaction, "Only the player who started this quiz can stop it.")
            return

        adapter.stop()
        await self.send_info_response(interaction, "The quiz has been stopped. No score was recorded.",
                                      "🛑 Quiz Stopped")

    async def handle_status(self, interaction: discord.Interaction):
        """Handle /status command"""
        adapter = self.sessions.get(interaction.channel_id)
        progress = adapter.session.progress() if adapter else None
        if progress is None:
            embed = discord.Embed(
                title="ℹ️ No Active Quiz",
                description="There is no active quiz session in this channel.",
                color=COLOR_INFO
            )
            embed.add_field(
                name="📚 Categories",
                value=", ".join(self.repository.categories()) or "None loaded",
                inline=False
            )
            await interaction.response.send_message(embed=embed, ephemeral=True)
            return

        embed = discord.Embed(
            title="▶️ Quiz Status",
            description=f"**{adapter.category}** · **{adapter.difficulty}**",
            color=COLOR_OK
        )
        embed.add_field(
            name="📊 Progress",
            value=(
                f"Question: {progress['question_number']}/{progress['total_questions']}\n"
                f"Completion: {progress['percent_complete']:.0f}%\n"
                f"Score: {progress['score']}"
            ),
            inline=True
        )
        if progress['phase'] is Phase.AWAITING_ANSWER and adapter.session.timer_settings.enabled:
            embed.add_field(name="⏰ Current Timer", value=f"{progress['time_left']} seconds remaining", inline=True)
        await interaction.response.send_message(embed=embed, ephemeral=True)

    async def handle_best(self, interaction: discord.Interaction):
        """Handle /best command"""
        best = self.score_manager.load_best()
        if best is None:
            await self.send_info_response(interaction, "No score has been recorded yet.", "🏆 Best Score")
        else:
            await self.send_info_response(interaction, f"The best score so far is **{best}%**.", "🏆 Best Score")

    async def handle_help(self, interaction: discord.Interaction):
        """Handle /help command"""
        embed = discord.Embed(
            title="📖 devquiz Commands",
            description="Answer multiple-choice questions against the clock.",
            color=COLOR_INFO
        )
        embed.add_field(
            name="🎮 Quiz",
            value=(
                "`/quiz <category> <difficulty>` - Start a quiz\n"
                "`/stop` - Abandon the running quiz\n"
                "`/status` - Show progress of the running quiz\n"
                "`/best` - Show the best score recorded"
            ),
            inline=False
        )
        embed.add_field(
            name="📏 Question Counts",
            value="Beginner: up to 10 · Intermediate: up to 7 · Advanced: up to 5",
            inline=False
        )
        embed.add_field(name="⚙️ Settings", value=self.config_manager.get_settings_summary(), inline=False)
        await interaction.response.send_message(embed=embed, ephemeral=True)

    async def send_info_response(self, interaction: discord.Interaction, message: str, title: str = "ℹ️ Information"):
        """Send formatted info response to user"""
        await self._send_ephemeral(interaction, message, title, COLOR_INFO)

    async def send_warning_response(self, interaction: discord.Interaction, message: str, title: str = "⚠️ Warning"):
        """Send formatted warning response to user"""
        await self._send_ephemeral(interaction, message, title, 0xffaa00)

    async def _send_ephemeral(self, interaction: discord.Interaction, message: str, title: str, color: int):
        try:
            embed = discord.Embed(title=title, description=message, color=color)
            if interaction.response.is_done():
                await interaction.followup.send(embed=embed, ephemeral=True)
            else:
                await interaction.response.send_message(embed=embed, ephemeral=True)
        except discord.HTTPException:
            logger.error(f"Failed to send '{title}' response to user")


async def run_bot(token=None, config=None):
    """Run the bot with proper error handling"""
    if not token:
        token = os.getenv('DISCORD_BOT_TOKEN')

    if not token:
        logger.error("No Discord bot token provided")
        return

    config = config or {}
    setup_error_logging(config.get('logging', {}).get('log_directory', './logs/'))
    bot = QuizBot(config)

    try:
        logger.info("Starting devquiz bot...")
        await bot.start(token)
    except discord.LoginFailure:
        logger.error("Invalid bot token provided")
    except discord.HTTPException as e:
        logger.error(f"HTTP error occurred: {e}")
    finally:
        if not bot.is_closed():
            await bot.close()
